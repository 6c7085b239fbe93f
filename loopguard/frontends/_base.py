"""BaseFrontend — language-agnostic tree-sitter AST → IR lowering infrastructure."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..frontend import Frontend
from ..ir import NO_SOURCE_LOCATION, IRInstruction, Opcode, SourceLocation
from .. import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoopLabels:
    """The four labels of one lowered loop; they share a numeric suffix."""

    cond: str
    body: str
    step: str
    end: str


class BaseFrontend(Frontend):
    """Base class for deterministic tree-sitter frontends.

    Subclasses populate ``_STMT_DISPATCH`` and ``_EXPR_DISPATCH`` tables and
    override field-name / literal constants where the grammar differs from
    the defaults.
    """

    # ── overridable constants ────────────────────────────────────

    FUNC_NAME_FIELD: str = "name"
    FUNC_PARAMS_FIELD: str = "parameters"
    FUNC_BODY_FIELD: str = "body"

    IF_CONDITION_FIELD: str = "condition"
    IF_CONSEQUENCE_FIELD: str = "consequence"
    IF_ALTERNATIVE_FIELD: str = "alternative"

    WHILE_CONDITION_FIELD: str = "condition"
    WHILE_BODY_FIELD: str = "body"

    CALL_FUNCTION_FIELD: str = "function"
    CALL_ARGUMENTS_FIELD: str = "arguments"

    ATTR_OBJECT_FIELD: str = "object"
    ATTR_ATTRIBUTE_FIELD: str = "attribute"

    SUBSCRIPT_VALUE_FIELD: str = "value"
    SUBSCRIPT_INDEX_FIELD: str = "subscript"

    ASSIGN_LEFT_FIELD: str = "left"
    ASSIGN_RIGHT_FIELD: str = "right"

    ATTRIBUTE_NODE_TYPE: str = "attribute"
    SUBSCRIPT_NODE_TYPE: str = "subscript"
    FUNCTION_EXPR_TYPES: frozenset[str] = frozenset()

    NONE_LITERAL: str = "None"
    DEFAULT_RETURN_VALUE: str = "None"
    # Literal keyword text → canonical constant understood by the VM
    KEYWORD_LITERALS: dict[str, str] = {}

    # Operator text → "and" / "or" for operators that short-circuit
    SHORT_CIRCUIT_OPS: dict[str, str] = {}
    # Whether plain assignment rebinds the nearest existing binding
    ASSIGNMENT_REBINDS: bool = False

    COMMENT_TYPES: frozenset[str] = frozenset({"comment"})
    NOISE_TYPES: frozenset[str] = frozenset({"newline", "\n"})

    # ── init ─────────────────────────────────────────────────────

    def __init__(self, namespace: str = ""):
        self._namespace = namespace
        self._reg_counter: int = 0
        self._label_counter: int = 0
        self._lambda_counter: int = 0
        self._instructions: list[IRInstruction] = []
        self._source: bytes = b""
        self._loop_stack: list[LoopLabels] = []
        self._rebind_scopes: list[set[str]] = [set()]
        self._STMT_DISPATCH: dict[str, Callable] = {}
        self._EXPR_DISPATCH: dict[str, Callable] = {}

    # ── helpers ──────────────────────────────────────────────────

    def _fresh_reg(self) -> str:
        r = f"%{self._reg_counter}"
        self._reg_counter += 1
        return r

    def _fresh_label(self, prefix: str = "L") -> str:
        n = self._label_counter
        self._label_counter += 1
        if self._namespace:
            return f"{prefix}_{self._namespace}_{n}"
        return f"{prefix}_{n}"

    def _fresh_loop_labels(self) -> LoopLabels:
        suffix = self._fresh_label("").lstrip("_")
        return LoopLabels(
            cond=f"{constants.LOOP_COND_PREFIX}{suffix}",
            body=f"{constants.LOOP_BODY_PREFIX}{suffix}",
            step=f"{constants.LOOP_STEP_PREFIX}{suffix}",
            end=f"{constants.LOOP_END_PREFIX}{suffix}",
        )

    def _fresh_temp(self, hint: str) -> str:
        return self._fresh_label(f"{constants.TEMP_VAR_PREFIX}{hint}")

    def _emit(
        self,
        opcode: Opcode,
        *,
        result_reg: str = "",
        operands: list[Any] = [],
        label: str = "",
        source_location: SourceLocation = NO_SOURCE_LOCATION,
        node=None,
    ) -> IRInstruction:
        loc = (
            source_location
            if not source_location.is_unknown()
            else (self._source_loc(node) if node else NO_SOURCE_LOCATION)
        )
        inst = IRInstruction(
            opcode=opcode,
            result_reg=result_reg or None,
            operands=operands or [],
            label=label or None,
            source_location=loc,
        )
        self._instructions.append(inst)
        return inst

    def _node_text(self, node) -> str:
        return self._source[node.start_byte : node.end_byte].decode("utf-8")

    def _source_loc(self, node) -> SourceLocation:
        s, e = node.start_point, node.end_point
        return SourceLocation(
            start_line=s[0] + 1,
            start_col=s[1],
            end_line=e[0] + 1,
            end_col=e[1],
        )

    def _unsupported(self, node, what: str = "") -> str:
        reg = self._fresh_reg()
        self._emit(
            Opcode.SYMBOLIC,
            result_reg=reg,
            operands=[f"{constants.UNSUPPORTED_PREFIX}{what or node.type}"],
            node=node,
        )
        return reg

    # ── entry point ──────────────────────────────────────────────

    def lower(self, tree, source: bytes) -> list[IRInstruction]:
        self._reg_counter = 0
        self._label_counter = 0
        self._lambda_counter = 0
        self._instructions = []
        self._source = source
        self._loop_stack = []
        self._rebind_scopes = [set()]
        root = tree.root_node
        entry = (
            f"{constants.CFG_ENTRY_LABEL}_{self._namespace}"
            if self._namespace
            else constants.CFG_ENTRY_LABEL
        )
        self._emit(Opcode.LABEL, label=entry)
        self._lower_block(root)
        logger.debug("Lowered %d bytes into %d instructions", len(source), len(self._instructions))
        return self._instructions

    # ── dispatchers ──────────────────────────────────────────────

    def _lower_block(self, node):
        """Lower a block of statements (module / suite / body).

        If *node* is itself a known statement whose handler is **not**
        ``_lower_block`` (e.g. a bare ``return_statement`` used as the
        consequence of an ``if``), it is lowered directly rather than
        iterating its children as sub-statements.
        """
        handler = self._STMT_DISPATCH.get(node.type)
        if (
            handler is not None
            and getattr(handler, "__func__", None) is not BaseFrontend._lower_block
        ):
            handler(node)
            return
        for child in node.children:
            if not child.is_named:
                continue
            self._lower_stmt(child)

    def _lower_stmt(self, node):
        ntype = node.type
        if ntype in self.COMMENT_TYPES or ntype in self.NOISE_TYPES:
            return
        handler = self._STMT_DISPATCH.get(ntype)
        if handler:
            handler(node)
            return
        # Fallback: try as expression
        self._lower_expr(node)

    def _lower_expr(self, node) -> str:
        """Lower an expression, return the register holding its value."""
        handler = self._EXPR_DISPATCH.get(node.type)
        if handler:
            return handler(node)
        return self._unsupported(node)

    # ── common expression lowerers ───────────────────────────────

    def _lower_const_literal(self, node) -> str:
        reg = self._fresh_reg()
        self._emit(
            Opcode.CONST,
            result_reg=reg,
            operands=[self._node_text(node)],
            node=node,
        )
        return reg

    def _lower_keyword_literal(self, node) -> str:
        text = self._node_text(node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.CONST,
            result_reg=reg,
            operands=[self.KEYWORD_LITERALS.get(text, text)],
            node=node,
        )
        return reg

    def _lower_identifier(self, node) -> str:
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_VAR,
            result_reg=reg,
            operands=[self._node_text(node)],
            node=node,
        )
        return reg

    def _lower_paren(self, node) -> str:
        inner = next(
            (c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES),
            None,
        )
        if inner is None:
            return self._unsupported(node, "empty_parentheses")
        return self._lower_expr(inner)

    def _lower_binop(self, node) -> str:
        children = [c for c in node.children if c.type not in ("(", ")")]
        op = self._node_text(children[1])
        if op in self.SHORT_CIRCUIT_OPS:
            return self._lower_short_circuit(
                self.SHORT_CIRCUIT_OPS[op], children[0], children[2], node
            )
        lhs_reg = self._lower_expr(children[0])
        rhs_reg = self._lower_expr(children[2])
        reg = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=reg,
            operands=[op, lhs_reg, rhs_reg],
            node=node,
        )
        return reg

    def _lower_short_circuit(self, kind: str, left, right, node) -> str:
        """Lower ``and`` / ``or`` so the right operand is only evaluated when needed."""
        temp = self._fresh_temp(kind)
        rhs_label = self._fresh_label(f"{kind}_rhs")
        end_label = self._fresh_label(f"{kind}_end")

        lhs_reg = self._lower_expr(left)
        self._emit(Opcode.STORE_VAR, operands=[temp, lhs_reg], node=node)
        targets = (
            f"{rhs_label},{end_label}" if kind == "and" else f"{end_label},{rhs_label}"
        )
        self._emit(Opcode.BRANCH_IF, operands=[lhs_reg], label=targets, node=node)

        self._emit(Opcode.LABEL, label=rhs_label)
        rhs_reg = self._lower_expr(right)
        self._emit(Opcode.STORE_VAR, operands=[temp, rhs_reg], node=node)
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)
        reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=reg, operands=[temp], node=node)
        return reg

    def _lower_conditional(self, cond_node, true_node, false_node, node) -> str:
        """Lower a value-producing ``c ? a : b`` / ``a if c else b``."""
        temp = self._fresh_temp("cond")
        true_label = self._fresh_label("cond_true")
        false_label = self._fresh_label("cond_false")
        end_label = self._fresh_label("cond_end")

        cond_reg = self._lower_expr(cond_node)
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{true_label},{false_label}",
            node=node,
        )
        self._emit(Opcode.LABEL, label=true_label)
        true_reg = self._lower_expr(true_node)
        self._emit(Opcode.STORE_VAR, operands=[temp, true_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=false_label)
        false_reg = self._lower_expr(false_node)
        self._emit(Opcode.STORE_VAR, operands=[temp, false_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)
        reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=reg, operands=[temp], node=node)
        return reg

    def _lower_unop(self, node) -> str:
        children = [c for c in node.children if c.type not in ("(", ")")]
        op = self._node_text(children[0])
        operand_reg = self._lower_expr(children[1])
        reg = self._fresh_reg()
        self._emit(
            Opcode.UNOP,
            result_reg=reg,
            operands=[op, operand_reg],
            node=node,
        )
        return reg

    def _lower_call(self, node) -> str:
        func_node = node.child_by_field_name(self.CALL_FUNCTION_FIELD)
        args_node = node.child_by_field_name(self.CALL_ARGUMENTS_FIELD)
        arg_regs = self._extract_call_args(args_node)

        # Method call: obj.method(...)
        if func_node is not None and func_node.type == self.ATTRIBUTE_NODE_TYPE:
            obj_node = func_node.child_by_field_name(self.ATTR_OBJECT_FIELD)
            attr_node = func_node.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
            obj_reg = self._lower_expr(obj_node)
            reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_METHOD,
                result_reg=reg,
                operands=[obj_reg, self._node_text(attr_node)] + arg_regs,
                node=node,
            )
            return reg

        # Plain function call
        if func_node is not None and func_node.type == "identifier":
            reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_FUNCTION,
                result_reg=reg,
                operands=[self._node_text(func_node)] + arg_regs,
                node=node,
            )
            return reg

        # Dynamic call target, e.g. tail(s)()
        target_reg = self._lower_expr(func_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_UNKNOWN,
            result_reg=reg,
            operands=[target_reg] + arg_regs,
            node=node,
        )
        return reg

    def _extract_call_args(self, args_node) -> list[str]:
        """Extract argument registers from a call arguments node."""
        if args_node is None:
            return []
        return [
            self._lower_expr(c)
            for c in args_node.children
            if c.is_named and c.type not in self.COMMENT_TYPES
        ]

    def _lower_attribute(self, node) -> str:
        obj_node = node.child_by_field_name(self.ATTR_OBJECT_FIELD)
        attr_node = node.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
        if obj_node is None or attr_node is None:
            return self._unsupported(node)
        obj_reg = self._lower_expr(obj_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_FIELD,
            result_reg=reg,
            operands=[obj_reg, self._node_text(attr_node)],
            node=node,
        )
        return reg

    def _lower_subscript(self, node) -> str:
        obj_node = node.child_by_field_name(self.SUBSCRIPT_VALUE_FIELD)
        idx_node = node.child_by_field_name(self.SUBSCRIPT_INDEX_FIELD)
        if obj_node is None or idx_node is None:
            return self._unsupported(node)
        obj_reg = self._lower_expr(obj_node)
        idx_reg = self._lower_expr(idx_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_INDEX,
            result_reg=reg,
            operands=[obj_reg, idx_reg],
            node=node,
        )
        return reg

    def _lower_list_literal(self, node) -> str:
        elems = [c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES]
        arr_reg = self._fresh_reg()
        size_reg = self._fresh_reg()
        self._emit(Opcode.CONST, result_reg=size_reg, operands=[str(len(elems))])
        self._emit(
            Opcode.NEW_ARRAY,
            result_reg=arr_reg,
            operands=["list", size_reg],
            node=node,
        )
        for i, elem in enumerate(elems):
            val_reg = self._lower_expr(elem)
            idx_reg = self._fresh_reg()
            self._emit(Opcode.CONST, result_reg=idx_reg, operands=[str(i)])
            self._emit(Opcode.STORE_INDEX, operands=[arr_reg, idx_reg, val_reg])
        return arr_reg

    def _lower_update_expr(self, node) -> str:
        """Lower i++ / i-- / ++i / --i update expressions."""
        children = [c for c in node.children if c.is_named]
        if not children:
            return self._unsupported(node)
        operand = children[0]
        text = self._node_text(node)
        op = "+" if "++" in text else "-"
        operand_reg = self._lower_expr(operand)
        one_reg = self._fresh_reg()
        self._emit(Opcode.CONST, result_reg=one_reg, operands=["1"])
        result_reg = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=result_reg,
            operands=[op, operand_reg, one_reg],
            node=node,
        )
        self._lower_store_target(operand, result_reg, node)
        # Postfix yields the old value
        return result_reg if text.startswith(("++", "--")) else operand_reg

    # ── common store target ──────────────────────────────────────

    def _store_opcode(self, name: str) -> Opcode:
        if self.ASSIGNMENT_REBINDS or name in self._rebind_scopes[-1]:
            return Opcode.ASSIGN_VAR
        return Opcode.STORE_VAR

    def _declare(self, name: str, val_reg: str, node=None):
        self._emit(Opcode.STORE_VAR, operands=[name, val_reg], node=node)

    def _lower_store_target(self, target, val_reg: str, parent_node):
        if target.type == "identifier":
            name = self._node_text(target)
            self._emit(
                self._store_opcode(name),
                operands=[name, val_reg],
                node=parent_node,
            )
        elif target.type == self.SUBSCRIPT_NODE_TYPE:
            obj_node = target.child_by_field_name(self.SUBSCRIPT_VALUE_FIELD)
            idx_node = target.child_by_field_name(self.SUBSCRIPT_INDEX_FIELD)
            obj_reg = self._lower_expr(obj_node)
            idx_reg = self._lower_expr(idx_node)
            self._emit(
                Opcode.STORE_INDEX,
                operands=[obj_reg, idx_reg, val_reg],
                node=parent_node,
            )
        else:
            self._unsupported(target, f"store_to_{target.type}")

    # ── common statement lowerers ────────────────────────────────

    def _lower_assignment(self, node) -> str:
        left = node.child_by_field_name(self.ASSIGN_LEFT_FIELD)
        right = node.child_by_field_name(self.ASSIGN_RIGHT_FIELD)
        if right is None:
            return self._unsupported(node, "annotation_only_assignment")
        if left.type == "identifier" and right.type in self.FUNCTION_EXPR_TYPES:
            val_reg = self._lower_function_expr(right, name=self._node_text(left))
        else:
            val_reg = self._lower_expr(right)
        self._lower_store_target(left, val_reg, node)
        return val_reg

    def _lower_augmented_assignment(self, node) -> str:
        left = node.child_by_field_name(self.ASSIGN_LEFT_FIELD)
        right = node.child_by_field_name(self.ASSIGN_RIGHT_FIELD)
        op_node = node.child_by_field_name("operator")
        op_text = self._node_text(op_node)[:-1]
        lhs_reg = self._lower_expr(left)
        rhs_reg = self._lower_expr(right)
        result = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=result,
            operands=[op_text, lhs_reg, rhs_reg],
            node=node,
        )
        self._lower_store_target(left, result, node)
        return result

    def _lower_return(self, node):
        """Lower a return statement. Override for language-specific keyword."""
        children = [c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES]
        if children:
            val_reg = self._lower_expr(children[0])
        else:
            val_reg = self._fresh_reg()
            self._emit(
                Opcode.CONST,
                result_reg=val_reg,
                operands=[self.DEFAULT_RETURN_VALUE],
            )
        self._emit(
            Opcode.RETURN,
            operands=[val_reg],
            node=node,
        )

    def _lower_if(self, node):
        cond_node = node.child_by_field_name(self.IF_CONDITION_FIELD)
        body_node = node.child_by_field_name(self.IF_CONSEQUENCE_FIELD)
        alternatives = node.children_by_field_name(self.IF_ALTERNATIVE_FIELD)
        end_label = self._fresh_label("if_end")
        self._lower_if_chain(cond_node, body_node, alternatives, end_label, node)
        self._emit(Opcode.LABEL, label=end_label)

    def _lower_if_chain(self, cond_node, body_node, alternatives: list, end_label: str, node):
        cond_reg = self._lower_expr(cond_node)
        true_label = self._fresh_label("if_true")
        false_label = self._fresh_label("if_false") if alternatives else end_label

        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{true_label},{false_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=true_label)
        self._lower_block(body_node)
        self._emit(Opcode.BRANCH, label=end_label)

        if not alternatives:
            return
        self._emit(Opcode.LABEL, label=false_label)
        first, rest = alternatives[0], alternatives[1:]
        if first.type == "elif_clause":
            self._lower_if_chain(
                first.child_by_field_name(self.IF_CONDITION_FIELD),
                first.child_by_field_name(self.IF_CONSEQUENCE_FIELD),
                rest,
                end_label,
                first,
            )
            return
        self._lower_alternative(first)
        self._emit(Opcode.BRANCH, label=end_label)

    def _lower_alternative(self, alt_node):
        """Lower an else / else-if alternative block."""
        body = alt_node.child_by_field_name("body")
        if body is not None:
            self._lower_block(body)
            return
        for child in alt_node.children:
            if child.is_named:
                self._lower_block(child)

    def _lower_break(self, node):
        """Lower break statement as BRANCH to innermost loop end."""
        if not self._loop_stack:
            self._unsupported(node, "break_outside_loop")
            return
        self._emit(Opcode.BRANCH, label=self._loop_stack[-1].end, node=node)

    def _lower_continue(self, node):
        """Lower continue statement as BRANCH to innermost loop step."""
        if not self._loop_stack:
            self._unsupported(node, "continue_outside_loop")
            return
        self._emit(Opcode.BRANCH, label=self._loop_stack[-1].step, node=node)

    def _lower_loop(
        self,
        node,
        cond: Callable[[], str | None],
        body: Callable[[], None],
        step: Callable[[], None] | None = None,
    ):
        """Emit the shared loop skeleton.

        cond_N: guard → body_N / end_N
        body_N: body
        step_N: optional update, back edge to cond_N
        end_N:
        """
        labels = self._fresh_loop_labels()
        self._emit(Opcode.LABEL, label=labels.cond)
        cond_reg = cond()
        if cond_reg is None:
            self._emit(Opcode.BRANCH, label=labels.body)
        else:
            self._emit(
                Opcode.BRANCH_IF,
                operands=[cond_reg],
                label=f"{labels.body},{labels.end}",
                node=node,
            )

        self._emit(Opcode.LABEL, label=labels.body)
        self._loop_stack.append(labels)
        body()
        self._loop_stack.pop()

        self._emit(Opcode.LABEL, label=labels.step)
        if step is not None:
            step()
        self._emit(Opcode.BRANCH, label=labels.cond, node=node)
        self._emit(Opcode.LABEL, label=labels.end)

    def _lower_while(self, node):
        cond_node = node.child_by_field_name(self.WHILE_CONDITION_FIELD)
        body_node = node.child_by_field_name(self.WHILE_BODY_FIELD)
        if node.child_by_field_name("alternative") is not None:
            self._unsupported(node, "while_else")
            return
        self._lower_loop(
            node,
            cond=lambda: self._lower_expr(cond_node),
            body=lambda: self._lower_block(body_node),
        )

    def _lower_function_def(self, node):
        name_node = node.child_by_field_name(self.FUNC_NAME_FIELD)
        params_node = node.child_by_field_name(self.FUNC_PARAMS_FIELD)
        body_node = node.child_by_field_name(self.FUNC_BODY_FIELD)

        func_name = self._node_text(name_node)
        func_reg = self._lower_function_body(func_name, params_node, body_node, node)
        self._declare(func_name, func_reg, node)

    def _lower_function_expr(self, node, name: str | None = None) -> str:
        """Lower an anonymous function / lambda, naming it after *name* if given."""
        params_node = node.child_by_field_name(self.FUNC_PARAMS_FIELD)
        body_node = node.child_by_field_name(self.FUNC_BODY_FIELD)
        if name is None:
            name_node = node.child_by_field_name(self.FUNC_NAME_FIELD)
            name = self._node_text(name_node) if name_node is not None else None
        if name is None:
            name = self._next_lambda_name()
        return self._lower_function_body(name, params_node, body_node, node)

    def _next_lambda_name(self) -> str:
        name = f"{constants.LAMBDA_NAME_PREFIX}_{self._lambda_counter}"
        self._lambda_counter += 1
        return name

    def _lower_function_body(self, func_name: str, params_node, body_node, node) -> str:
        """Emit ``BRANCH end; func_label: params body return; end:`` and the func ref."""
        func_label = self._fresh_label(f"{constants.FUNC_LABEL_PREFIX}{func_name}")
        end_label = self._fresh_label(f"{constants.END_FUNC_LABEL_PREFIX}{func_name}")

        self._emit(Opcode.BRANCH, label=end_label, node=node)
        self._emit(Opcode.LABEL, label=func_label)

        saved_loops = self._loop_stack
        self._loop_stack = []
        self._rebind_scopes.append(set())

        if params_node is not None:
            self._lower_params(params_node)

        if body_node is not None:
            if self._is_expression_body(body_node):
                val_reg = self._lower_expr(body_node)
                self._emit(Opcode.RETURN, operands=[val_reg], node=body_node)
            else:
                self._lower_block(body_node)

        self._rebind_scopes.pop()
        self._loop_stack = saved_loops

        # Implicit return at end of function
        none_reg = self._fresh_reg()
        self._emit(
            Opcode.CONST, result_reg=none_reg, operands=[self.DEFAULT_RETURN_VALUE]
        )
        self._emit(Opcode.RETURN, operands=[none_reg])

        self._emit(Opcode.LABEL, label=end_label)

        func_reg = self._fresh_reg()
        self._emit(
            Opcode.CONST,
            result_reg=func_reg,
            operands=[
                constants.FUNC_REF_TEMPLATE.format(name=func_name, label=func_label)
            ],
            node=node,
        )
        return func_reg

    def _is_expression_body(self, body_node) -> bool:
        """True when a function body is a bare expression (lambda / arrow)."""
        return False

    def _lower_params(self, params_node):
        """Lower function parameters. Override for language-specific param shapes."""
        if params_node.type == "identifier":
            self._lower_param(params_node)
            return
        for child in params_node.children:
            self._lower_param(child)

    def _lower_param(self, child):
        """Lower a single function parameter to SYMBOLIC + STORE_VAR."""
        if not child.is_named or child.type in self.COMMENT_TYPES:
            return
        pname = self._extract_param_name(child)
        if pname is None:
            self._unsupported(child, f"parameter_{child.type}")
            return
        reg = self._fresh_reg()
        self._emit(
            Opcode.SYMBOLIC,
            result_reg=reg,
            operands=[f"{constants.PARAM_PREFIX}{pname}"],
            node=child,
        )
        self._declare(pname, reg)

    def _extract_param_name(self, child) -> str | None:
        """Extract parameter name from a parameter node. Override per language."""
        if child.type == "identifier":
            return self._node_text(child)
        return None

    def _lower_raise_or_throw(self, node, keyword: str = "raise"):
        children = [c for c in node.children if c.is_named]
        if children:
            val_reg = self._lower_expr(children[0])
        else:
            val_reg = self._fresh_reg()
            self._emit(
                Opcode.CONST,
                result_reg=val_reg,
                operands=[self.DEFAULT_RETURN_VALUE],
            )
        self._emit(
            Opcode.THROW,
            operands=[val_reg],
            node=node,
        )

    def _lower_expression_statement(self, node):
        """Lower an expression statement (unwrap and lower the inner expr)."""
        for child in node.children:
            if child.is_named and child.type not in self.COMMENT_TYPES:
                self._lower_stmt(child)
