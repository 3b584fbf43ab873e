"""
AI providers for session notes.

- deepseek: DeepSeek chat-completions client and SOAP prompt/parser
- providers: OpenAI transcription, SOAP generation with fallbacks, insights
- mock: canned content used when no real provider can answer
"""
