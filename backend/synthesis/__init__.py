from synthesis.openai_client import OpenAICompletionClient, OpenAIEmbeddingClient
from synthesis.json_decoder import decode_json_array, decode_json_object
from synthesis.reasoner import BucketReasoner, EmergentResult

__all__ = [
    "OpenAICompletionClient",
    "OpenAIEmbeddingClient",
    "decode_json_array",
    "decode_json_object",
    "BucketReasoner",
    "EmergentResult"
]
