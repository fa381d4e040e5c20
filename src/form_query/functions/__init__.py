"""Built-in and user-defined FQL functions."""

from form_query.functions.builtins import BUILTINS, call_builtin, is_builtin

__all__ = ["BUILTINS", "call_builtin", "is_builtin"]
