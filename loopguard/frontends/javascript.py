"""JavaScriptFrontend — tree-sitter JavaScript AST → IR lowering."""

from __future__ import annotations

from typing import Callable

from ._base import BaseFrontend
from ..ir import Opcode


class JavaScriptFrontend(BaseFrontend):
    """Lowers a JavaScript tree-sitter AST into flattened TAC IR.

    ``null`` and ``undefined`` both lower to ``None``; ``let`` / ``const`` /
    ``var`` and function declarations bind in the current scope while plain
    assignment rebinds the nearest existing binding.
    """

    NONE_LITERAL = "None"
    DEFAULT_RETURN_VALUE = "None"
    KEYWORD_LITERALS = {
        "true": "True",
        "false": "False",
        "null": "None",
        "undefined": "None",
    }

    ATTRIBUTE_NODE_TYPE = "member_expression"
    ATTR_OBJECT_FIELD = "object"
    ATTR_ATTRIBUTE_FIELD = "property"

    SUBSCRIPT_NODE_TYPE = "subscript_expression"
    SUBSCRIPT_VALUE_FIELD = "object"
    SUBSCRIPT_INDEX_FIELD = "index"

    FUNCTION_EXPR_TYPES = frozenset({"arrow_function", "function_expression", "function"})

    SHORT_CIRCUIT_OPS = {"&&": "and", "||": "or"}
    ASSIGNMENT_REBINDS = True

    COMMENT_TYPES = frozenset({"comment"})
    NOISE_TYPES = frozenset({"\n"})

    def __init__(self, namespace: str = ""):
        super().__init__(namespace=namespace)
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "number": self._lower_const_literal,
            "string": self._lower_const_literal,
            "template_string": self._lower_template_string,
            "true": self._lower_keyword_literal,
            "false": self._lower_keyword_literal,
            "null": self._lower_keyword_literal,
            "undefined": self._lower_keyword_literal,
            "binary_expression": self._lower_binop,
            "augmented_assignment_expression": self._lower_augmented_assignment,
            "unary_expression": self._lower_unop,
            "update_expression": self._lower_update_expr,
            "call_expression": self._lower_call,
            "member_expression": self._lower_attribute,
            "subscript_expression": self._lower_subscript,
            "parenthesized_expression": self._lower_paren,
            "array": self._lower_list_literal,
            "assignment_expression": self._lower_assignment,
            "arrow_function": self._lower_function_expr,
            "function": self._lower_function_expr,
            "function_expression": self._lower_function_expr,
            "ternary_expression": self._lower_ternary,
        }
        self._STMT_DISPATCH: dict[str, Callable] = {
            "program": self._lower_block,
            "statement_block": self._lower_block,
            "expression_statement": self._lower_expression_statement,
            "lexical_declaration": self._lower_var_declaration,
            "variable_declaration": self._lower_var_declaration,
            "return_statement": self._lower_return,
            "if_statement": self._lower_if,
            "while_statement": self._lower_while,
            "for_statement": self._lower_c_style_for,
            "for_in_statement": self._lower_for_of,
            "function_declaration": self._lower_function_def,
            "throw_statement": self._lower_throw,
            "empty_statement": lambda _: None,
            "break_statement": self._lower_break,
            "continue_statement": self._lower_continue,
        }

    # ── JS block: hoist function declarations ────────────────────

    def _lower_block(self, node):
        if node.type not in ("program", "statement_block"):
            super()._lower_block(node)
            return
        stmts = [c for c in node.children if c.is_named]
        for child in stmts:
            if child.type == "function_declaration":
                self._lower_stmt(child)
        for child in stmts:
            if child.type != "function_declaration":
                self._lower_stmt(child)

    # ── JS var declaration ───────────────────────────────────────

    def _lower_var_declaration(self, node):
        """Lower lexical_declaration / variable_declaration."""
        for child in node.children:
            if child.type != "variable_declarator":
                continue
            name_node = child.child_by_field_name("name")
            value_node = child.child_by_field_name("value")
            if name_node is None or name_node.type != "identifier":
                self._unsupported(child, "destructuring_declaration")
                continue
            name = self._node_text(name_node)

            if value_node is not None and value_node.type in self.FUNCTION_EXPR_TYPES:
                val_reg = self._lower_function_expr(value_node, name=name)
            elif value_node is not None:
                val_reg = self._lower_expr(value_node)
            else:
                val_reg = self._fresh_reg()
                self._emit(
                    Opcode.CONST,
                    result_reg=val_reg,
                    operands=[self.NONE_LITERAL],
                )
            self._declare(name, val_reg, node)

    # ── JS ternary ───────────────────────────────────────────────

    def _lower_ternary(self, node) -> str:
        return self._lower_conditional(
            node.child_by_field_name("condition"),
            node.child_by_field_name("consequence"),
            node.child_by_field_name("alternative"),
            node,
        )

    # ── JS template string ───────────────────────────────────────

    def _lower_template_string(self, node) -> str:
        """Template strings without substitutions are plain string constants."""
        if any(c.type == "template_substitution" for c in node.children):
            return self._unsupported(node, "template_substitution")
        text = self._node_text(node)[1:-1]
        reg = self._fresh_reg()
        self._emit(Opcode.CONST, result_reg=reg, operands=[repr(text)], node=node)
        return reg

    # ── JS loops ─────────────────────────────────────────────────

    def _statement_expr(self, node):
        """Unwrap ``expr;`` clauses; an empty clause yields None."""
        if node is None or node.type == "empty_statement":
            return None
        if node.type == "expression_statement":
            return next((c for c in node.children if c.is_named), None)
        return node

    def _lower_c_style_for(self, node):
        """Lower a C-style for(init; cond; update) loop."""
        init_node = node.child_by_field_name("initializer")
        cond_node = self._statement_expr(node.child_by_field_name("condition"))
        update_node = node.child_by_field_name("increment") or node.child_by_field_name(
            "update"
        )
        body_node = node.child_by_field_name("body")

        if init_node is not None:
            self._lower_stmt(init_node)

        self._lower_loop(
            node,
            cond=lambda: self._lower_expr(cond_node) if cond_node is not None else None,
            body=lambda: self._lower_block(body_node),
            step=lambda: self._lower_expr(update_node) if update_node is not None else None,
        )

    def _lower_for_of(self, node):
        """Lower ``for (const x of xs)`` as an index walk; ``for...in`` is unsupported."""
        operator = node.child_by_field_name("operator")
        if operator is None or self._node_text(operator) != "of":
            self._unsupported(node, "for_in")
            return
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        body_node = node.child_by_field_name("body")
        if left is None or left.type != "identifier":
            self._unsupported(node, "for_of_pattern")
            return
        var_name = self._node_text(left)

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
                Opcode.LOAD_FIELD, result_reg=len_reg, operands=[iter_reg, "length"]
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
            self._declare(var_name, elem_reg, node)
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

    # ── JS params / bodies ───────────────────────────────────────

    def _lower_params(self, params_node):
        if params_node.type == "identifier":
            self._lower_param(params_node)
            return
        super()._lower_params(params_node)

    def _extract_param_name(self, child) -> str | None:
        if child.type == "identifier":
            return self._node_text(child)
        if child.type == "assignment_pattern":
            left = child.child_by_field_name("left")
            return self._node_text(left) if left is not None else None
        return None

    def _lower_function_expr(self, node, name: str | None = None) -> str:
        if node.type == "arrow_function" and node.child_by_field_name("parameters") is None:
            # Single bare parameter: x => ...
            param = node.child_by_field_name("parameter")
            body = node.child_by_field_name("body")
            if name is None:
                name = self._next_lambda_name()
            return self._lower_function_body(name, param, body, node)
        return super()._lower_function_expr(node, name=name)

    def _is_expression_body(self, body_node) -> bool:
        return body_node.type != "statement_block"

    # ── JS call: host namespaces ─────────────────────────────────

    HOST_FUNCTIONS = {
        ("console", "log"): "print",
        ("Math", "floor"): "math_floor",
        ("Math", "abs"): "abs",
        ("Math", "max"): "max",
        ("Math", "min"): "min",
        ("Math", "sqrt"): "math_sqrt",
    }

    def _lower_call(self, node) -> str:
        func_node = node.child_by_field_name(self.CALL_FUNCTION_FIELD)
        if func_node is not None and func_node.type == self.ATTRIBUTE_NODE_TYPE:
            obj_node = func_node.child_by_field_name(self.ATTR_OBJECT_FIELD)
            prop_node = func_node.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
            key = (self._node_text(obj_node), self._node_text(prop_node))
            if key in self.HOST_FUNCTIONS:
                arg_regs = self._extract_call_args(
                    node.child_by_field_name(self.CALL_ARGUMENTS_FIELD)
                )
                reg = self._fresh_reg()
                self._emit(
                    Opcode.CALL_FUNCTION,
                    result_reg=reg,
                    operands=[self.HOST_FUNCTIONS[key]] + arg_regs,
                    node=node,
                )
                return reg
        return super()._lower_call(node)

    # ── JS throw ─────────────────────────────────────────────────

    def _lower_throw(self, node):
        self._lower_raise_or_throw(node, keyword="throw")

    # ── JS if alternative ────────────────────────────────────────

    def _lower_alternative(self, alt_node):
        for child in alt_node.children:
            if child.is_named:
                self._lower_stmt(child)
