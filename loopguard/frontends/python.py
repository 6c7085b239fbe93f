"""PythonFrontend — tree-sitter Python AST → IR lowering."""

from __future__ import annotations

from typing import Callable

from ._base import BaseFrontend
from ..ir import Opcode


class PythonFrontend(BaseFrontend):
    """Lowers a Python tree-sitter AST into flattened TAC IR."""

    NONE_LITERAL = "None"
    DEFAULT_RETURN_VALUE = "None"

    ATTRIBUTE_NODE_TYPE = "attribute"
    SUBSCRIPT_NODE_TYPE = "subscript"
    SUBSCRIPT_VALUE_FIELD = "value"
    SUBSCRIPT_INDEX_FIELD = "subscript"
    FUNCTION_EXPR_TYPES = frozenset({"lambda"})

    SHORT_CIRCUIT_OPS = {"and": "and", "or": "or"}
    ASSIGNMENT_REBINDS = False

    COMMENT_TYPES = frozenset({"comment"})
    NOISE_TYPES = frozenset({"newline", "\n"})

    def __init__(self, namespace: str = ""):
        super().__init__(namespace=namespace)
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "integer": self._lower_const_literal,
            "float": self._lower_const_literal,
            "string": self._lower_const_literal,
            "concatenated_string": self._lower_const_literal,
            "true": self._lower_const_literal,
            "false": self._lower_const_literal,
            "none": self._lower_const_literal,
            "binary_operator": self._lower_binop,
            "boolean_operator": self._lower_binop,
            "comparison_operator": self._lower_comparison,
            "unary_operator": self._lower_unop,
            "not_operator": self._lower_unop,
            "call": self._lower_call,
            "attribute": self._lower_attribute,
            "subscript": self._lower_subscript,
            "parenthesized_expression": self._lower_paren,
            "list": self._lower_list_literal,
            "tuple": self._lower_list_literal,
            "expression_list": self._lower_list_literal,
            "assignment": self._lower_assignment,
            "lambda": self._lower_function_expr,
            "conditional_expression": self._lower_conditional_expr,
        }
        self._STMT_DISPATCH: dict[str, Callable] = {
            "module": self._lower_block,
            "block": self._lower_block,
            "expression_statement": self._lower_expression_statement,
            "assignment": self._lower_assignment,
            "augmented_assignment": self._lower_augmented_assignment,
            "return_statement": self._lower_return,
            "if_statement": self._lower_if,
            "while_statement": self._lower_while,
            "for_statement": self._lower_for,
            "function_definition": self._lower_function_def,
            "raise_statement": self._lower_raise,
            "global_statement": self._lower_rebind_declaration,
            "nonlocal_statement": self._lower_rebind_declaration,
            "break_statement": self._lower_break,
            "continue_statement": self._lower_continue,
            "pass_statement": lambda _: None,
        }

    # ── Python-specific: comparisons ─────────────────────────────

    def _lower_comparison(self, node) -> str:
        """Lower ``a < b`` and chains such as ``a < b <= c``."""
        children = [c for c in node.children if c.type not in self.COMMENT_TYPES]
        operands = children[0::2]
        ops = [self._node_text(c) for c in children[1::2]]

        regs = [self._lower_expr(operands[0])]
        result = None
        for op, rhs in zip(ops, operands[1:]):
            regs.append(self._lower_expr(rhs))
            cmp_reg = self._fresh_reg()
            self._emit(
                Opcode.BINOP,
                result_reg=cmp_reg,
                operands=[op, regs[-2], regs[-1]],
                node=node,
            )
            if result is None:
                result = cmp_reg
                continue
            joined = self._fresh_reg()
            self._emit(
                Opcode.BINOP,
                result_reg=joined,
                operands=["and", result, cmp_reg],
                node=node,
            )
            result = joined
        return result

    # ── Python-specific: for loop ────────────────────────────────

    def _lower_for(self, node):
        """Lower ``for x in xs`` as an index walk over ``xs``.

        The index lives in a hidden temporary that is advanced in the step
        block, so ``continue`` still makes progress.
        """
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        body_node = node.child_by_field_name("body")
        if node.child_by_field_name("alternative") is not None:
            self._unsupported(node, "for_else")
            return

        iter_reg = self._lower_expr(right)
        idx_var = self._fresh_temp("for_idx")
        zero_reg = self._fresh_reg()
        self._emit(Opcode.CONST, result_reg=zero_reg, operands=["0"])
        self._emit(Opcode.STORE_VAR, operands=[idx_var, zero_reg])

        def cond() -> str:
            idx_reg = self._fresh_reg()
            self._emit(Opcode.LOAD_VAR, result_reg=idx_reg, operands=[idx_var])
            len_reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_FUNCTION,
                result_reg=len_reg,
                operands=["len", iter_reg],
                node=right,
            )
            cond_reg = self._fresh_reg()
            self._emit(
                Opcode.BINOP, result_reg=cond_reg, operands=["<", idx_reg, len_reg]
            )
            return cond_reg

        def body():
            idx_reg = self._fresh_reg()
            self._emit(Opcode.LOAD_VAR, result_reg=idx_reg, operands=[idx_var])
            elem_reg = self._fresh_reg()
            self._emit(
                Opcode.LOAD_INDEX, result_reg=elem_reg, operands=[iter_reg, idx_reg]
            )
            self._lower_store_target(left, elem_reg, node)
            self._lower_block(body_node)

        def step():
            idx_reg = self._fresh_reg()
            self._emit(Opcode.LOAD_VAR, result_reg=idx_reg, operands=[idx_var])
            one_reg = self._fresh_reg()
            self._emit(Opcode.CONST, result_reg=one_reg, operands=["1"])
            new_idx = self._fresh_reg()
            self._emit(
                Opcode.BINOP, result_reg=new_idx, operands=["+", idx_reg, one_reg]
            )
            self._emit(Opcode.STORE_VAR, operands=[idx_var, new_idx])

        self._lower_loop(node, cond=cond, body=body, step=step)

    # ── Python-specific: global / nonlocal ───────────────────────

    def _lower_rebind_declaration(self, node):
        if len(self._rebind_scopes) == 1:
            # Module level: names are already global
            return
        for child in node.children:
            if child.type == "identifier":
                self._rebind_scopes[-1].add(self._node_text(child))

    # ── Python-specific: parameters ──────────────────────────────

    def _extract_param_name(self, child) -> str | None:
        if child.type == "identifier":
            return self._node_text(child)
        if child.type in ("default_parameter", "typed_default_parameter"):
            pname_node = child.child_by_field_name("name")
            return self._node_text(pname_node) if pname_node else None
        if child.type == "typed_parameter":
            id_node = next(
                (sub for sub in child.children if sub.type == "identifier"),
                None,
            )
            return self._node_text(id_node) if id_node else None
        return None

    def _is_expression_body(self, body_node) -> bool:
        return body_node.type != "block"

    # ── Python-specific: raise ───────────────────────────────────

    def _lower_raise(self, node):
        self._lower_raise_or_throw(node, keyword="raise")

    # ── Python-specific: conditional expression ──────────────────

    def _lower_conditional_expr(self, node) -> str:
        children = [c for c in node.children if c.type not in ("if", "else")]
        true_expr, cond_expr, false_expr = children[0], children[1], children[2]
        return self._lower_conditional(cond_expr, true_expr, false_expr, node)

    # ── Python-specific: tuple unpack ────────────────────────────

    def _lower_store_target(self, target, val_reg: str, parent_node):
        if target.type in ("pattern_list", "tuple_pattern", "list_pattern"):
            self._lower_tuple_unpack(target, val_reg, parent_node)
            return
        super()._lower_store_target(target, val_reg, parent_node)

    def _lower_tuple_unpack(self, target, val_reg: str, parent_node):
        elems = [c for c in target.children if c.is_named]
        for i, child in enumerate(elems):
            idx_reg = self._fresh_reg()
            self._emit(Opcode.CONST, result_reg=idx_reg, operands=[str(i)])
            elem_reg = self._fresh_reg()
            self._emit(
                Opcode.LOAD_INDEX,
                result_reg=elem_reg,
                operands=[val_reg, idx_reg],
            )
            self._lower_store_target(child, elem_reg, parent_node)
