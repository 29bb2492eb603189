"""Oracle access and response parsing."""

from .oracle_client import (
    AnalysisOracleClient,
    AnthropicOracle,
    OracleBackend,
    OracleError,
    OracleUnavailable,
    OracleTimeout
)
from .response_parser import ResponseParser, create_fallback_output

__all__ = [
    'AnalysisOracleClient',
    'AnthropicOracle',
    'OracleBackend',
    'OracleError',
    'OracleUnavailable',
    'OracleTimeout',
    'ResponseParser',
    'create_fallback_output'
]
