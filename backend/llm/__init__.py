"""LLM client modules."""
from .openai_client import create_client, generate_json, strip_code_fences

__all__ = ["create_client", "generate_json", "strip_code_fences"]
