"""
Built-in persona definitions.

Each YAML file describes one persona bound to a fixed synthesized voice:
- id: stable persona id
- name: display name
- voice_id: speech synthesis voice
- personality: short description of character and voice
- instruction_text: analyst instructions used for insights and conversation
- feedback_style: how spoken reflections are phrased
"""
