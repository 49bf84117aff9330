"""
chatrelay: persisted chats relayed to Gemini, with SSE streaming.
"""
