"""Compilation of rate and parameter expressions into plain callables."""

from __future__ import annotations

import re
from tokenize import TokenError
from typing import Dict, Iterable, List, Tuple

import sympy as sp
from sympy.parsing.sympy_parser import parse_expr, standard_transformations

from .entities import CompiledExpression
from .errors import ConfigurationError

_IDENTIFIER = re.compile(r"(?<![\w.])([A-Za-z_][A-Za-z_0-9]*)(\s*\()?")

_FUNCTIONS = {
    "exp": sp.exp,
    "log": sp.log,
    "sqrt": sp.sqrt,
    "abs": sp.Abs,
    "min": sp.Min,
    "max": sp.Max,
}
_CONSTANTS = {
    "pi": sp.pi,
}


def expression_tokens(expression: str) -> List[str]:
    """Return the variable names referenced by *expression*, in first-seen order."""

    seen: List[str] = []
    for match in _IDENTIFIER.finditer(expression or ""):
        name, call = match.group(1), match.group(2)
        if call and name in _FUNCTIONS:
            continue
        if name in _CONSTANTS:
            continue
        if name not in seen:
            seen.append(name)
    return seen


def compile_expression(expression: str, variables: Iterable[str], *, label: str = "expression") -> CompiledExpression:
    """Compile *expression* over the declared *variables*.

    Names are bound to placeholder symbols before parsing so identifiers such
    as ``S``, ``I``, ``E``, ``beta`` or ``gamma`` are never confused with the
    sympy objects of the same name.
    """

    text = (expression or "").strip()
    if not text:
        raise ConfigurationError(f"{label}: empty expression")
    allowed = set(variables)
    tokens = expression_tokens(text)
    undeclared = [token for token in tokens if token not in allowed]
    if undeclared:
        raise ConfigurationError(f"{label}: '{text}' references undeclared name(s): {', '.join(undeclared)}")

    safe_names: Dict[str, sp.Symbol] = {token: sp.Symbol(f"SYM_{idx}") for idx, token in enumerate(tokens)}
    reverse_safe = {symbol.name: token for token, symbol in safe_names.items()}
    local_dict: Dict[str, object] = dict(_FUNCTIONS)
    local_dict.update(_CONSTANTS)
    local_dict.update(safe_names)
    try:
        sym_expr = parse_expr(
            text.replace("^", "**"),
            local_dict=local_dict,
            transformations=standard_transformations,
        )
    except (SyntaxError, TokenError, TypeError, ValueError, sp.SympifyError) as exc:
        raise ConfigurationError(f"{label}: unable to parse '{text}': {exc}") from exc
    if not isinstance(sym_expr, sp.Expr):
        raise ConfigurationError(f"{label}: '{text}' is not a numeric expression")

    free_symbols = sorted(sym_expr.free_symbols, key=lambda s: s.name)
    unknown = [str(sym) for sym in free_symbols if sym.name not in reverse_safe]
    if unknown:
        raise ConfigurationError(f"{label}: '{text}' references undeclared name(s): {', '.join(unknown)}")
    tokens_order: Tuple[str, ...] = tuple(reverse_safe[sym.name] for sym in free_symbols)
    func = sp.lambdify(free_symbols, sym_expr, modules=["math"])
    return CompiledExpression(expression=text, tokens=tokens_order, func=func, sympy_expr=sym_expr)


__all__ = ["compile_expression", "expression_tokens"]
