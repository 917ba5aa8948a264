"""
Resumail Core - batched email analysis with credit metering.

Pipeline version: 2.0.0
Prompt version: v2
"""

__version__ = "2.0.0"
DEFAULT_PROMPT_VERSION = "v2"

__all__ = [
    "__version__",
    "DEFAULT_PROMPT_VERSION"
]
