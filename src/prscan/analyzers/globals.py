"""Scope-aware detection of global variable usage in JavaScript sources.

Source is parsed with tree-sitter and walked once with a small scope
resolver. Every identifier that does not resolve to a local binding is a
global reference and is recorded with its access mode:

- ``read``: the name is read, called, or used as the root of a member chain
- ``read-write``: the name itself is the target of ``=`` or a compound
  assignment (``x = 1``, ``window.x += 1``)

Member chains rooted at ``globalThis``, ``self`` or ``window`` (and
webpack's ``__webpack_require__.g``) are normalized so that
``window.fetch`` is reported as ``fetch``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

import tree_sitter_javascript as tsjs
from tree_sitter import Language, Node, Parser

from prscan.errors import JavaScriptParseError
from prscan.models.schemas import AccessMode, ExtractedFile, FileKind

logger = logging.getLogger(__name__)

JS_LANGUAGE = Language(tsjs.language())


# === Name Tables ===

# ECMAScript built-ins; reading them is not interesting, writing them is.
# eval is deliberately absent.
ECMA_GLOBALS = frozenset({
    "AggregateError", "Array", "ArrayBuffer", "Atomics", "BigInt",
    "BigInt64Array", "BigUint64Array", "Boolean", "DataView", "Date",
    "Error", "EvalError", "FinalizationRegistry", "Float16Array",
    "Float32Array", "Float64Array", "Function", "Infinity", "Int16Array",
    "Int32Array", "Int8Array", "Intl", "Iterator", "JSON", "Map", "Math",
    "NaN", "Number", "Object", "Promise", "Proxy", "RangeError",
    "ReferenceError", "Reflect", "RegExp", "Set", "SharedArrayBuffer",
    "String", "Symbol", "SyntaxError", "TypeError", "Uint16Array",
    "Uint32Array", "Uint8Array", "Uint8ClampedArray", "URIError", "WeakMap",
    "WeakRef", "WeakSet", "decodeURI", "decodeURIComponent", "encodeURI",
    "encodeURIComponent", "escape", "globalThis", "isFinite", "isNaN",
    "parseFloat", "parseInt", "undefined", "unescape",
})

# Names that evaluate to the global object itself
GLOBAL_ALIASES = ("globalThis", "self", "window")

WEBPACK_GLOBAL_PREFIX = ("__webpack_require__", "g")

# Never recorded as globals
IGNORED_NAMES = frozenset({*GLOBAL_ALIASES, "arguments"})


# === Node Type Groups ===

FUNCTION_TYPES = frozenset({
    "function_declaration",
    "function_expression",
    "function",
    "generator_function_declaration",
    "generator_function",
    "arrow_function",
    "method_definition",
})

# Function expressions whose own name is visible inside their body
NAMED_FUNCTION_EXPRESSIONS = frozenset({"function_expression", "function", "generator_function"})

DECLARATION_TYPES = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
})

ASSIGNMENT_TYPES = frozenset({"assignment_expression", "augmented_assignment_expression"})

REFERENCE_TYPES = frozenset({
    "identifier",
    "shorthand_property_identifier",
    "shorthand_property_identifier_pattern",
    "undefined",
})

JSX_TAG_TYPES = frozenset({"jsx_opening_element", "jsx_closing_element", "jsx_self_closing_element"})


class Scope:
    """A lexical scope and the names bound directly in it."""

    __slots__ = ("parent", "kind", "bindings")

    def __init__(self, parent: Scope | None = None, kind: str = "block") -> None:
        self.parent = parent
        self.kind = kind
        self.bindings: set[str] = set()

    def declare(self, names: Iterable[str]) -> None:
        self.bindings.update(names)

    def has_binding(self, name: str) -> bool:
        """Check whether ``name`` is bound here or in any enclosing scope."""
        scope: Scope | None = self
        while scope is not None:
            if name in scope.bindings:
                return True
            scope = scope.parent
        return False


class GlobalUsagePool:
    """Accumulates global usage for one file or one package.

    Write access dominates: once a name is recorded as read-write it never
    goes back to read. ECMAScript built-ins are only recorded when written.
    """

    def __init__(self) -> None:
        self._usage: dict[str, AccessMode] = {}

    def add(self, name: str, mode: AccessMode) -> None:
        if name in ECMA_GLOBALS and mode == AccessMode.READ:
            return
        if mode == AccessMode.READ_WRITE or name not in self._usage:
            self._usage[name] = mode

    def merge(self, other: GlobalUsagePool | Mapping[str, AccessMode]) -> None:
        usage = other.as_dict() if isinstance(other, GlobalUsagePool) else other
        for name, mode in usage.items():
            if mode == AccessMode.READ_WRITE or name not in self._usage:
                self._usage[name] = mode

    def as_dict(self) -> dict[str, AccessMode]:
        return dict(self._usage)

    def __len__(self) -> int:
        return len(self._usage)

    def __contains__(self, name: object) -> bool:
        return name in self._usage


# === Binding Collection ===


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _pattern_names(node: Node | None) -> list[str]:
    """Names bound by a binding target (identifier or destructuring pattern)."""
    if node is None:
        return []

    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return [_text(node)]
    if node.type == "pair_pattern":
        return _pattern_names(node.child_by_field_name("value"))
    if node.type in ("assignment_pattern", "object_assignment_pattern"):
        return _pattern_names(node.child_by_field_name("left"))
    if node.type in ("object_pattern", "array_pattern", "rest_pattern", "formal_parameters"):
        names = []
        for child in node.named_children:
            names.extend(_pattern_names(child))
        return names
    return []


def _declarator_names(declaration: Node) -> list[str]:
    names = []
    for declarator in declaration.named_children:
        if declarator.type == "variable_declarator":
            names.extend(_pattern_names(declarator.child_by_field_name("name")))
    return names


def _hoisted_names(root: Node | None) -> set[str]:
    """Collect ``var`` bindings that hoist to the function scope at ``root``.

    Nested functions and class static blocks own their ``var`` bindings, so
    the scan does not descend into them.
    """
    names: set[str] = set()
    if root is None:
        return names

    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in FUNCTION_TYPES or node.type == "class_static_block":
            continue
        if node.type == "variable_declaration":
            names.update(_declarator_names(node))
            continue
        if node.type == "for_in_statement":
            kind = node.child_by_field_name("kind")
            if kind is not None and kind.type == "var":
                names.update(_pattern_names(node.child_by_field_name("left")))
        stack.extend(node.named_children)
    return names


def _collect_declaration(statement: Node, names: set[str]) -> None:
    if statement.type == "lexical_declaration":
        names.update(_declarator_names(statement))
    elif statement.type in DECLARATION_TYPES:
        name = statement.child_by_field_name("name")
        if name is not None:
            names.add(_text(name))
    elif statement.type == "export_statement":
        declaration = statement.child_by_field_name("declaration")
        if declaration is not None:
            _collect_declaration(declaration, names)
    elif statement.type in ("switch_case", "switch_default", "else_clause"):
        for child in statement.named_children:
            _collect_declaration(child, names)
    # Sloppy-mode declarations without braces: `label: function f() {}`
    # and `if (x) function f() {}`
    elif statement.type == "labeled_statement":
        body = statement.child_by_field_name("body")
        if body is not None:
            _collect_declaration(body, names)
    elif statement.type == "if_statement":
        for field in ("consequence", "alternative"):
            branch = statement.child_by_field_name(field)
            if branch is not None:
                _collect_declaration(branch, names)


def _lexical_names(block: Node) -> set[str]:
    """Block-scoped declarations among a block's statements."""
    names: set[str] = set()
    for statement in block.named_children:
        _collect_declaration(statement, names)
    return names


def _import_names(program: Node) -> set[str]:
    names: set[str] = set()
    for statement in program.named_children:
        if statement.type != "import_statement":
            continue
        for clause in statement.named_children:
            if clause.type != "import_clause":
                continue
            for item in clause.named_children:
                if item.type == "identifier":
                    names.add(_text(item))
                elif item.type == "namespace_import":
                    names.update(_text(c) for c in item.named_children if c.type == "identifier")
                elif item.type == "named_imports":
                    for spec in item.named_children:
                        if spec.type != "import_specifier":
                            continue
                        local = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                        if local is not None:
                            names.add(_text(local))
    return names


def _enter_scope(node: Node, parent: Scope | None) -> Scope | None:
    """Create the scope introduced by ``node``, or None if it has none."""
    node_type = node.type

    if node_type == "program":
        scope = Scope(None, "function")
        scope.declare(_hoisted_names(node))
        scope.declare(_lexical_names(node))
        scope.declare(_import_names(node))
        return scope

    if node_type in FUNCTION_TYPES:
        scope = Scope(parent, "function")
        if node_type in NAMED_FUNCTION_EXPRESSIONS:
            name = node.child_by_field_name("name")
            if name is not None:
                scope.declare([_text(name)])
        param = node.child_by_field_name("parameter")
        if param is not None:
            scope.declare(_pattern_names(param))
        scope.declare(_pattern_names(node.child_by_field_name("parameters")))
        body = node.child_by_field_name("body")
        # Expression-bodied arrows have no statements to hoist from
        if body is not None and body.type == "statement_block":
            scope.declare(_hoisted_names(body))
        return scope

    if node_type == "class_static_block":
        scope = Scope(parent, "function")
        scope.declare(_hoisted_names(node.child_by_field_name("body")))
        return scope

    if node_type in ("statement_block", "switch_body"):
        scope = Scope(parent)
        scope.declare(_lexical_names(node))
        return scope

    if node_type == "for_statement":
        scope = Scope(parent)
        initializer = node.child_by_field_name("initializer")
        if initializer is not None and initializer.type == "lexical_declaration":
            scope.declare(_declarator_names(initializer))
        return scope

    if node_type == "for_in_statement":
        scope = Scope(parent)
        kind = node.child_by_field_name("kind")
        if kind is not None and kind.type in ("let", "const"):
            scope.declare(_pattern_names(node.child_by_field_name("left")))
        return scope

    if node_type == "catch_clause":
        scope = Scope(parent)
        scope.declare(_pattern_names(node.child_by_field_name("parameter")))
        return scope

    if node_type in ("class", "class_declaration"):
        scope = Scope(parent, "class")
        name = node.child_by_field_name("name")
        if name is not None:
            scope.declare([_text(name)])
        return scope

    return None


# === Reference Resolution ===


def _member_chain(node: Node) -> list[str] | None:
    """Flatten a static member chain like ``a.b["c"]`` into ``["a", "b", "c"]``.

    Returns None when any link is computed, private, or rooted at something
    other than a plain identifier.
    """
    parts: list[str] = []
    current = node
    while True:
        if current.type == "member_expression":
            prop = current.child_by_field_name("property")
            if prop is None or prop.type != "property_identifier":
                return None
            parts.append(_text(prop))
        elif current.type == "subscript_expression":
            index = current.child_by_field_name("index")
            if index is None or index.type != "string":
                return None
            parts.append(_text(index)[1:-1])
        else:
            return None

        obj = current.child_by_field_name("object")
        if obj is None:
            return None
        if obj.type == "identifier":
            parts.append(_text(obj))
            break
        current = obj

    parts.reverse()
    return parts


def _normalize_chain(chain: list[str], scope: Scope) -> tuple[list[str], bool]:
    """Strip global object prefixes.

    Returns the remaining chain and whether it is known to start at the
    global object.
    """
    if len(chain) >= 2 and tuple(chain[:2]) == WEBPACK_GLOBAL_PREFIX:
        chain = chain[2:]

    must_be_global = False
    while chain and chain[0] in GLOBAL_ALIASES and not scope.has_binding(chain[0]):
        chain = chain[1:]
        must_be_global = True
    return chain, must_be_global


def _is_assignment_target(node: Node, parent: Node | None) -> bool:
    if parent is None or parent.type not in ASSIGNMENT_TYPES:
        return False
    return parent.child_by_field_name("left") == node


def _first_error(root: Node) -> Node:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        if node.has_error:
            stack.extend(reversed(node.children))
    return root


def _children_to_visit(node: Node) -> list[Node]:
    """Named children that may contain references, in source order."""
    node_type = node.type

    if node_type == "import_statement":
        return []
    if node_type == "export_statement":
        # Re-exports name bindings of another module
        if node.child_by_field_name("source") is not None:
            return []
    elif node_type == "export_specifier":
        name = node.child_by_field_name("name")
        return [name] if name is not None else []
    elif node_type in JSX_TAG_TYPES:
        name = node.child_by_field_name("name")
        return [child for child in node.named_children if child != name]

    return node.named_children


def analyze_globals(source: str | bytes) -> dict[str, AccessMode]:
    """Find every global name a JavaScript source touches.

    Identifiers inside a computed member key are references in their own
    right, so ``foo[bar]`` reports ``bar`` as well as ``foo``.

    Args:
        source: JavaScript source text (script or module, JSX allowed).

    Returns:
        Mapping of global name to access mode, in first-seen order.

    Raises:
        JavaScriptParseError: If the source contains syntax errors.
    """
    data = source.encode("utf-8") if isinstance(source, str) else source
    tree = Parser(JS_LANGUAGE).parse(data)
    root = tree.root_node

    if root.has_error:
        error = _first_error(root)
        row, column = error.start_point
        raise JavaScriptParseError(row + 1, column + 1)

    pool = GlobalUsagePool()
    program_scope = _enter_scope(root, None)
    stack: list[tuple[Node, Scope, Node | None]] = [
        (child, program_scope, root) for child in reversed(_children_to_visit(root))
    ]

    while stack:
        node, scope, parent = stack.pop()
        node_type = node.type

        if node_type in ("member_expression", "subscript_expression"):
            chain = _member_chain(node)
            if chain is not None:
                chain, must_be_global = _normalize_chain(chain, scope)
                if chain and chain[0] != "arguments" and (must_be_global or not scope.has_binding(chain[0])):
                    write = _is_assignment_target(node, parent) and len(chain) == 1
                    pool.add(chain[0], AccessMode.READ_WRITE if write else AccessMode.READ)
                continue

        elif node_type in REFERENCE_TYPES:
            if parent is not None and parent.type in DECLARATION_TYPES and parent.child_by_field_name("name") == node:
                continue
            name = "undefined" if node_type == "undefined" else _text(node)
            if name not in IGNORED_NAMES and not scope.has_binding(name):
                write = _is_assignment_target(node, parent)
                pool.add(name, AccessMode.READ_WRITE if write else AccessMode.READ)
            continue

        child_scope = _enter_scope(node, scope) or scope
        # Computed method keys are evaluated in the enclosing scope
        key = node.child_by_field_name("name") if node_type == "method_definition" else None
        for child in reversed(_children_to_visit(node)):
            stack.append((child, scope if child == key else child_scope, node))

    return pool.as_dict()


def analyze_package_files(files: Iterable[ExtractedFile]) -> tuple[dict[str, AccessMode], list[str]]:
    """Merge global usage across the files of one package.

    Files are visited in path order. A file that fails to parse is logged,
    reported in the returned warnings and otherwise ignored.

    Returns:
        Tuple of (merged usage, parse warnings).
    """
    pool = GlobalUsagePool()
    warnings: list[str] = []

    for extracted in sorted(files, key=lambda f: f.path):
        if extracted.kind != FileKind.FILE:
            continue
        try:
            pool.merge(analyze_globals(extracted.content))
        except JavaScriptParseError as e:
            logger.warning(f"Failed to analyze {extracted.path}: {e}")
            warnings.append(f"{extracted.path}: {e}")

    return pool.as_dict(), warnings
