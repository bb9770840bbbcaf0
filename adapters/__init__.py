"""
Adapters for the external AI services used by the journal core.

Speech: ElevenLabs (speech-to-text, text-to-speech, voice design)
Language: OpenAI chat completions (analysis, conversation, persona generation)

Adapters own timeouts and response validation. They hold no journal state
and make no entitlement or persistence decisions.
"""
