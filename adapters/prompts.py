"""
Prompt text for the language-model adapter.

Persona-specific guidance is passed in by the caller; this module only
frames it. Keep replies short: the output is spoken back to the user.
"""
from typing import List

from .base import ConversationContext


GENERIC_INSTRUCTION = """
You are an empathetic AI therapist analyzing a voice journal entry.
Acknowledge feelings before offering perspective, stay warm and grounded,
and never diagnose.
""".strip()

GENERIC_FEEDBACK_STYLE = (
    "A gentle, supportive 2-3 sentence reflection that acknowledges their "
    "feelings and offers a compassionate perspective"
)

ANALYSIS_SYSTEM_SUFFIX = "Always respond with valid JSON only."

COMMON_EMOTIONS = "stress, anxiety, hope, joy, sadness, fear, excitement, contentment, frustration, peace"
COMMON_MARKERS = "rumination, self-criticism, avoidance, resilience, growth-mindset, catastrophizing"


def build_analysis_prompt(transcript: str, feedback_style: str) -> str:
    """User message asking for the fixed insight JSON structure."""
    style = feedback_style.strip() or GENERIC_FEEDBACK_STYLE
    return f"""Analyze the following transcript and provide structured insights.

Transcript: "{transcript}"

Return a JSON object with this exact structure:
{{
  "summary": "A brief 1-2 sentence summary of the entry",
  "emotions": [
    {{ "name": "emotion_name", "score": 0.0-1.0 }}
  ],
  "topics": ["topic1", "topic2"],
  "psychMarkers": [
    {{ "name": "marker_name", "level": "low|medium|high", "description": "brief explanation" }}
  ],
  "feedbackText": "{style}"
}}

Include 2-4 emotions, 2-3 topics, and 1-3 psychological markers.
Common emotions: {COMMON_EMOTIONS}
Common markers: {COMMON_MARKERS}

Return ONLY the JSON object, no additional text."""


def build_analysis_system(instruction_text: str) -> str:
    instruction = instruction_text.strip() or GENERIC_INSTRUCTION
    return f"{instruction}\n\n{ANALYSIS_SYSTEM_SUFFIX}"


def build_conversation_system(instruction_text: str, context: ConversationContext) -> str:
    """System prompt for one conversational reply, anchored to the journal entry."""
    instruction = instruction_text.strip() or GENERIC_INSTRUCTION
    emotions = ", ".join(context.emotions) or "none noted"
    topics = ", ".join(context.topics) or "none noted"
    return f"""{instruction}

You are continuing a spoken conversation about this journal entry.
Original entry: "{context.transcript}"
Emotions noted: {emotions}
Topics: {topics}

Reply in 2-3 short sentences. Stay in character, respond to what they just said,
and end with a gentle question or reflection only when it helps."""


def build_conversation_messages(
    instruction_text: str, context: ConversationContext, user_text: str
) -> List[dict]:
    messages = [{"role": "system", "content": build_conversation_system(instruction_text, context)}]
    for turn in context.history:
        messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append({"role": "user", "content": user_text})
    return messages


PERSONA_SYSTEM = (
    "You design AI journaling companions. Always respond with valid JSON only."
)


def build_persona_prompt(description: str) -> str:
    return f"""Create a journaling companion from this description:

"{description}"

Return a JSON object with this exact structure:
{{
  "name": "A short display name",
  "personality": "One or two sentences describing personality and voice (age, accent, pace, tone)",
  "instructionText": "System instructions telling the companion how to analyze journal entries in character",
  "feedbackStyle": "How the companion phrases its 2-3 sentence spoken reflections"
}}

Return ONLY the JSON object, no additional text."""
