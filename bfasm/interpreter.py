from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .config import DEFAULT_TAPE_SIZE
from .translator import (
    CELL_MODULUS,
    LabelAllocator,
    Source,
    TokenKind,
    coalesce,
    scan,
)


class StepLimitExceeded(RuntimeError):
    """Raised when execution exceeds the configured step budget."""


@dataclass
class ExecutionState:
    step: int
    pc: int
    kind: Optional[TokenKind]
    pointer: int
    output: bytes


# One instruction per run, except loop runs which expand to one per bracket.
Instruction = Tuple[TokenKind, int]


@dataclass
class RunInterpreter:
    """Executes the coalesced run stream with the semantics of the emitted assembly.

    Cells wrap at 256, the pointer wraps at ``tape_size``, every Read/Write
    unit transfers one byte and a read at end of input leaves the cell as is.
    """

    tape_size: int = DEFAULT_TAPE_SIZE

    tape: bytearray = field(init=False, repr=False)
    pointer: int = field(init=False, repr=False)
    output_buffer: bytearray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.tape = bytearray(self.tape_size)
        self.pointer = 0
        self.output_buffer = bytearray()

    def run(
        self,
        source: Source,
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
    ) -> bytes:
        for _ in self.step(source, input_data=input_data, max_steps=max_steps):
            pass
        return bytes(self.output_buffer)

    def step(
        self,
        source: Source,
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
    ) -> Iterator[ExecutionState]:
        self.reset()
        program, jump_map = self.compile(source)
        input_iter = iter(list(input_data or []))
        pc = 0
        steps = 0

        while pc < len(program):
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded("program exceeded allowed step count")
            kind, count = program[pc]
            pc = self._execute(kind, count, pc, jump_map, input_iter)
            steps += 1
            yield self._snapshot(steps, pc, kind)

        yield self._snapshot(steps, pc, None)

    @staticmethod
    def compile(source: Source) -> Tuple[List[Instruction], Dict[int, int]]:
        """Flatten the run stream into instructions and pair the loop brackets.

        Translation errors propagate exactly as the translator raises them.
        """
        program: List[Instruction] = []
        jump_map: Dict[int, int] = {}
        labels = LabelAllocator()
        open_positions: Dict[int, int] = {}
        for run in coalesce(scan(source)):
            if run.kind is TokenKind.LOOP_OPEN:
                for token in run.tokens:
                    open_positions[labels.open(token)] = len(program)
                    program.append((run.kind, 1))
            elif run.kind is TokenKind.LOOP_CLOSE:
                for token in run.tokens:
                    start = open_positions.pop(labels.close(token))
                    jump_map[start] = len(program)
                    jump_map[len(program)] = start
                    program.append((run.kind, 1))
            else:
                program.append((run.kind, run.count))
        labels.finish()
        return program, jump_map

    def _execute(
        self,
        kind: TokenKind,
        count: int,
        pc: int,
        jump_map: Dict[int, int],
        input_iter: Iterator[int],
    ) -> int:
        new_pc = pc + 1
        if kind is TokenKind.INC:
            self.tape[self.pointer] = (self.tape[self.pointer] + count) % CELL_MODULUS
        elif kind is TokenKind.DEC:
            self.tape[self.pointer] = (self.tape[self.pointer] - count) % CELL_MODULUS
        elif kind is TokenKind.MOVE_RIGHT:
            self.pointer = (self.pointer + count) % self.tape_size
        elif kind is TokenKind.MOVE_LEFT:
            self.pointer = (self.pointer - count) % self.tape_size
        elif kind is TokenKind.WRITE:
            self.output_buffer.extend([self.tape[self.pointer]] * count)
        elif kind is TokenKind.READ:
            for _ in range(count):
                try:
                    self.tape[self.pointer] = next(input_iter) % CELL_MODULUS
                except StopIteration:
                    break
        elif kind is TokenKind.LOOP_OPEN:
            if self.tape[self.pointer] == 0:
                new_pc = jump_map[pc] + 1
        elif kind is TokenKind.LOOP_CLOSE:
            if self.tape[self.pointer] != 0:
                new_pc = jump_map[pc] + 1
        return new_pc

    def _snapshot(self, step: int, pc: int, kind: Optional[TokenKind]) -> ExecutionState:
        return ExecutionState(
            step=step,
            pc=pc,
            kind=kind,
            pointer=self.pointer,
            output=bytes(self.output_buffer),
        )


__all__ = [
    "ExecutionState",
    "RunInterpreter",
    "StepLimitExceeded",
]
