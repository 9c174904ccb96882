"""LLM service module.

Provides the language model layer supporting multiple providers
(Ollama, Google Gemini, NVIDIA).

Key modules:
- llm.py: Provider factory and client creation
- response_parser.py: Lenient parsing of code-generation replies
- code_generator.py: Question + dataset → analysis code
- summarizer.py: Natural-language gloss of a result
- suggestions.py: Suggested questions for an uploaded dataset
- llm_schemas.py: Pydantic schemas for structured outputs
"""
