"""Abstract base class for LLM provider adapters."""

from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LLMAdapter(ABC):
    """Async structured-output text generation.

    Implementations return an instance of the caller-supplied pydantic schema
    and retry transient provider faults and malformed JSON internally.
    """

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        """Generate structured text output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0).
            system_prompt: Optional system/instruction prompt.
            max_retries: Maximum number of attempts.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...


def retry_llm_call(exc: BaseException) -> bool:
    """Retry transient provider faults and unparseable model output."""
    from santavid.services.retry import is_retriable

    # pydantic.ValidationError and json errors are ValueErrors
    return is_retriable(exc) or isinstance(exc, ValueError)
