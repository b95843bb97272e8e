from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Protocol, TextIO, Tuple, Union

from .config import DEFAULT_TAPE_SIZE, TapeConfig

logger = logging.getLogger(__name__)


class TranslationError(Exception):
    """Base class for errors that abort the translation of one source file."""

    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(f"{line}:{column}: {message}")
        self.message = message
        self.line = line
        self.column = column


class UnexpectedToken(TranslationError):
    def __init__(self, character: str, line: int, column: int) -> None:
        super().__init__(f"unexpected token {character!r}", line, column)
        self.character = character


class UnmatchedLoopClose(TranslationError):
    def __init__(self, line: int, column: int) -> None:
        super().__init__("']' has no matching '['", line, column)


class UnclosedLoop(TranslationError):
    def __init__(self, line: int, column: int) -> None:
        super().__init__("unclosed bracket", line, column)


# === Tokens ===


class TokenKind(str, Enum):
    INC = "+"
    DEC = "-"
    MOVE_RIGHT = ">"
    MOVE_LEFT = "<"
    READ = ","
    WRITE = "."
    LOOP_OPEN = "["
    LOOP_CLOSE = "]"


COMMENT_MARKER = "#"

_SYMBOLS = {kind.value: kind for kind in TokenKind}
_WHITESPACE = frozenset(" \t\r\f\v")


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    line: int
    column: int


@dataclass(frozen=True)
class Run:
    kind: TokenKind
    tokens: Tuple[Token, ...]

    @property
    def count(self) -> int:
        return len(self.tokens)

    @property
    def line(self) -> int:
        return self.tokens[0].line

    @property
    def column(self) -> int:
        return self.tokens[0].column


Source = Union[str, TextIO]


# === Scanner ===


def _iter_chunks(source: Source, chunk_size: int = 4096) -> Iterator[str]:
    if isinstance(source, str):
        yield source
        return
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield chunk


def scan(source: Source) -> Iterator[Token]:
    """Yield the tokens of ``source``, skipping whitespace and ``#`` comments.

    ``source`` may be a string or a readable text stream; streams are read
    lazily in chunks. Raises :class:`UnexpectedToken` on the first character
    that is neither a symbol, whitespace nor part of a comment.
    """
    line, column = 1, 1
    in_comment = False
    for chunk in _iter_chunks(source):
        for char in chunk:
            if char == "\n":
                in_comment = False
                line += 1
                column = 1
                continue
            if in_comment:
                continue
            kind = _SYMBOLS.get(char)
            if kind is not None:
                yield Token(kind=kind, line=line, column=column)
            elif char == COMMENT_MARKER:
                in_comment = True
            elif char not in _WHITESPACE:
                raise UnexpectedToken(char, line, column)
            column += 1


# === Run coalescing ===


def coalesce(tokens: Iterable[Token]) -> Iterator[Run]:
    group: List[Token] = []
    iterator = iter(tokens)
    while True:
        try:
            token = next(iterator)
        except StopIteration:
            break
        except TranslationError:
            # Tokens before the failure are still processed so errors surface in source order.
            if group:
                yield Run(kind=group[0].kind, tokens=tuple(group))
            raise
        if group and token.kind is not group[0].kind:
            yield Run(kind=group[0].kind, tokens=tuple(group))
            group = []
        group.append(token)
    if group:
        yield Run(kind=group[0].kind, tokens=tuple(group))


# === Labels ===


class LabelAllocator:
    """Hands out loop labels and pairs every ']' with its '['."""

    def __init__(self) -> None:
        self._next_label = 0
        self._stack: List[Tuple[int, Token]] = []

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def allocated(self) -> int:
        return self._next_label

    def open(self, token: Token) -> int:
        label = self._next_label
        self._next_label += 1
        self._stack.append((label, token))
        return label

    def close(self, token: Token) -> int:
        if not self._stack:
            raise UnmatchedLoopClose(token.line, token.column)
        label, _ = self._stack.pop()
        return label

    def finish(self) -> None:
        if self._stack:
            _, outermost = self._stack[0]
            raise UnclosedLoop(outermost.line, outermost.column)


# === Pointer tracking ===


@dataclass(frozen=True)
class PointerMove:
    step: int
    wraps: bool
    before: int
    after: int


@dataclass
class TapeState:
    """Compile-time view of the data pointer.

    ``exact`` stays true until the pointer moves inside a loop body; after
    that the runtime pointer may differ from ``pointer`` and every move has
    to wrap at runtime.
    """

    size: int
    pointer: int = 0
    exact: bool = True

    def move_right(self, count: int) -> PointerMove:
        before = self.pointer
        step = count % self.size
        after = (before + step) % self.size
        self.pointer = after
        return PointerMove(step=step, wraps=before + step >= self.size, before=before, after=after)

    def move_left(self, count: int) -> PointerMove:
        before = self.pointer
        step = count % self.size
        after = (before - step) % self.size
        self.pointer = after
        return PointerMove(step=step, wraps=before - step < 0, before=before, after=after)


# === Code emitter ===

# %r9 holds the pointer offset, %r10 the tape base address. %rcx and %r11 are
# scratch registers; both are clobbered by syscall anyway.

PROLOGUE = """.set tape_size, {tape_size}

.section .bss
.lcomm tape, tape_size

.section .text
.global _start

_start:
    xor     %r9,            %r9
    lea     tape(%rip),     %r10
"""

EPILOGUE = """    mov     $60,            %eax
    xor     %edi,           %edi
    syscall
"""

INCREMENT = "    addb    ${amount},             (%r10, %r9, 1)\n"
DECREMENT = "    subb    ${amount},             (%r10, %r9, 1)\n"

ADD_POINTER = "    add     ${step},             %r9\n"
SUB_POINTER = "    sub     ${step},             %r9\n"
ADD_POINTER_WIDE = """    movabs  ${step},     %rcx
    add     %rcx,           %r9
"""
SUB_POINTER_WIDE = """    movabs  ${step},     %rcx
    sub     %rcx,           %r9
"""

# Both wrap sequences reduce the pointer back into [0, tape_size) for any
# runtime pointer that was in range before the move.
WRAP_AFTER_ADD = """    movabs  ${tape_size},     %r11
    mov     %r9,            %rcx
    sub     %r11,           %rcx
    cmovae  %rcx,           %r9
"""
WRAP_AFTER_SUB = """    movabs  ${tape_size},     %r11
    lea     (%r9, %r11),    %rcx
    cmovb   %rcx,           %r9
"""

READ_BYTE = """    xor     %eax,           %eax
    xor     %edi,           %edi
    lea     (%r10, %r9, 1), %rsi
    mov     $1,             %edx
    syscall
"""

WRITE_BYTE = """    mov     $1,             %eax
    mov     $1,             %edi
    lea     (%r10, %r9, 1), %rsi
    mov     $1,             %edx
    syscall
"""

LOOP_OPEN = """
loop{label}:
    cmpb    $0,             (%r10, %r9, 1)
    je      loop{label}_end
"""

LOOP_CLOSE = """    cmpb    $0,             (%r10, %r9, 1)
    jne     loop{label}

loop{label}_end:
"""

IMM32_MAX = 2**31 - 1
CELL_MODULUS = 256


class Sink(Protocol):
    def write(self, text: str) -> object:
        ...


class AssemblyEmitter:
    """Writes x86-64 GNU assembler text for a stream of runs."""

    def __init__(self, sink: Sink, tape_size: int) -> None:
        self.sink = sink
        self.tape_size = tape_size

    def prologue(self) -> None:
        self.sink.write(PROLOGUE.format(tape_size=self.tape_size))

    def epilogue(self) -> None:
        self.sink.write(EPILOGUE)

    def emit_run(self, run: Run, labels: LabelAllocator, tape: TapeState) -> None:
        kind = run.kind
        if kind is TokenKind.INC:
            self.sink.write(INCREMENT.format(amount=run.count % CELL_MODULUS))
        elif kind is TokenKind.DEC:
            self.sink.write(DECREMENT.format(amount=run.count % CELL_MODULUS))
        elif kind is TokenKind.MOVE_RIGHT:
            if labels.depth:
                tape.exact = False
            self._emit_move(tape.move_right(run.count), forward=True, checked=not tape.exact)
        elif kind is TokenKind.MOVE_LEFT:
            if labels.depth:
                tape.exact = False
            self._emit_move(tape.move_left(run.count), forward=False, checked=not tape.exact)
        elif kind is TokenKind.READ:
            for _ in range(run.count):
                self.sink.write(READ_BYTE)
        elif kind is TokenKind.WRITE:
            for _ in range(run.count):
                self.sink.write(WRITE_BYTE)
        elif kind is TokenKind.LOOP_OPEN:
            for token in run.tokens:
                self.sink.write(LOOP_OPEN.format(label=labels.open(token)))
        elif kind is TokenKind.LOOP_CLOSE:
            for token in run.tokens:
                self.sink.write(LOOP_CLOSE.format(label=labels.close(token)))
        else:
            raise AssertionError(f"unhandled token kind {kind!r}")

    def _emit_move(self, move: PointerMove, *, forward: bool, checked: bool = False) -> None:
        """Emit a pointer move; ``checked`` forces the runtime wrap sequence."""
        if move.step == 0:
            return
        if forward:
            template = ADD_POINTER if move.step <= IMM32_MAX else ADD_POINTER_WIDE
        else:
            template = SUB_POINTER if move.step <= IMM32_MAX else SUB_POINTER_WIDE
        self.sink.write(template.format(step=move.step))
        if move.wraps or checked:
            wrap = WRAP_AFTER_ADD if forward else WRAP_AFTER_SUB
            self.sink.write(wrap.format(tape_size=self.tape_size))


# === Translator ===


@dataclass
class TranslationContext:
    """State owned by a single file's translation."""

    emitter: AssemblyEmitter
    tape: TapeState
    labels: LabelAllocator = field(default_factory=LabelAllocator)

    @classmethod
    def create(cls, sink: Sink, tape_size: int) -> "TranslationContext":
        return cls(emitter=AssemblyEmitter(sink, tape_size), tape=TapeState(size=tape_size))


@dataclass(frozen=True)
class TranslationResult:
    tape_size: int
    run_count: int
    label_count: int
    final_pointer: int


class Translator:
    def __init__(self, tape_size: int = DEFAULT_TAPE_SIZE, config: Optional[TapeConfig] = None) -> None:
        self.config = config or TapeConfig.from_size(tape_size)

    @property
    def tape_size(self) -> int:
        return self.config.size

    def translate(self, source: Source, sink: Sink) -> TranslationResult:
        """Translate ``source`` and write the assembly to ``sink``.

        On error the text already written to ``sink`` is incomplete and must
        be discarded by the caller.
        """
        context = TranslationContext.create(sink, self.tape_size)
        context.emitter.prologue()
        run_count = 0
        for run in coalesce(scan(source)):
            context.emitter.emit_run(run, context.labels, context.tape)
            run_count += 1
        context.labels.finish()
        context.emitter.epilogue()
        logger.debug(
            "translated %d runs, %d loops, final pointer %d",
            run_count,
            context.labels.allocated,
            context.tape.pointer,
        )
        return TranslationResult(
            tape_size=self.tape_size,
            run_count=run_count,
            label_count=context.labels.allocated,
            final_pointer=context.tape.pointer,
        )

    def translate_to_string(self, source: Source) -> str:
        buffer = io.StringIO()
        self.translate(source, buffer)
        return buffer.getvalue()


__all__ = [
    "AssemblyEmitter",
    "LabelAllocator",
    "PointerMove",
    "Run",
    "TapeState",
    "Token",
    "TokenKind",
    "TranslationContext",
    "TranslationError",
    "TranslationResult",
    "Translator",
    "UnclosedLoop",
    "UnexpectedToken",
    "UnmatchedLoopClose",
    "coalesce",
    "scan",
]
