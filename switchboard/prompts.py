"""System prompts for Switchboard requests."""

from typing import Optional

from switchboard.schemas import ModelDescriptor, RequestContext, TaskType


BASE_PROMPT = (
    "You are an advanced AI assistant providing intelligent insights and analysis."
)

# First matching specialty tag wins
SPECIALTY_FOCUS: tuple[tuple[str, str], ...] = (
    ("executive-insights", "Focus on executive-level strategic insights, complex analysis, and "
     "high-value decision support. Provide comprehensive, actionable recommendations with "
     "clear reasoning."),
    ("sales-insights", "Specialize in analytical reasoning, sales optimization, and negotiation "
     "insights. Provide balanced perspectives and practical recommendations."),
    ("real-time-processing", "Provide quick, actionable insights for real-time assistance. Focus "
     "on immediate value and clear communication while maintaining accuracy."),
    ("trend-identification", "Analyze patterns and provide background intelligence. Focus on "
     "trend identification, sentiment analysis, and continuous monitoring insights."),
    ("cultural-context", "Provide culturally-aware analysis with excellent multi-language "
     "support. Consider communication styles and international business practices."),
    ("general-purpose", "Deliver balanced, comprehensive analysis with strong reasoning. "
     "Provide clear, structured insights."),
)

TASK_FOCUS: dict[TaskType, str] = {
    TaskType.INTERVIEW: "Focus on candidate assessment, interview coaching, and hiring recommendations.",
    TaskType.SALES: "Focus on sales insights, deal optimization, and negotiation strategies.",
    TaskType.EXECUTIVE: "Focus on strategic decision-making, leadership insights, and organizational impact.",
}


def build_system_prompt(model: ModelDescriptor, context: Optional[RequestContext] = None) -> str:
    """Prompt tailored to the model's strengths and the request's context."""
    parts = [BASE_PROMPT]
    focus = next((text for tag, text in SPECIALTY_FOCUS if model.has_tag(tag)), None)
    if focus:
        parts.append(focus)
    if context is not None:
        if context.task_type in TASK_FOCUS:
            parts.append(TASK_FOCUS[context.task_type])
        if context.industry:
            parts.append(f"Consider {context.industry} industry context and best practices.")
    return " ".join(parts)
