from .registry import FUNCTIONS, MUTATION, QUERY, call

__all__ = ["FUNCTIONS", "MUTATION", "QUERY", "call"]
