"""Title prompt section."""

TITLE_INSTRUCTIONS = """
- You will generate a short title based on the first message a user begins a conversation with.
- The title should be no more than 10 words.
- Do not use quotes or colons.
- Do not answer the user's question, only generate a title.
"""
