"""Execute the emitted assembly on a tiny x86-64 subset model and compare it
with the reference interpreter."""

import re
import unittest
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from bfasm import RunInterpreter, Translator
from bfasm.config import MAX_TAPE_SIZE

MASK64 = (1 << 64) - 1
OPERAND_SPLIT = re.compile(r",\s*(?![^()]*\))")
REGISTER_ALIASES = {"eax": "rax", "edi": "rdi", "edx": "rdx"}


class AssemblySimulator:
    def __init__(self, assembly: str, input_data: Sequence[int] = ()) -> None:
        self.instructions: List[List[str]] = []
        self.labels: Dict[str, int] = {}
        for raw in assembly.splitlines():
            line = raw.strip()
            if not line or line.startswith("."):
                continue
            if line.endswith(":"):
                self.labels[line[:-1]] = len(self.instructions)
                continue
            mnemonic, _, rest = line.partition(" ")
            operands = [op.strip() for op in OPERAND_SPLIT.split(rest.strip())] if rest.strip() else []
            self.instructions.append([mnemonic] + operands)
        self.registers: Dict[str, int] = defaultdict(int)
        self.memory: Dict[int, int] = defaultdict(int)
        self.carry = False
        self.zero = False
        self.input = list(input_data)
        self.output = bytearray()
        self.exit_status: Optional[int] = None

    def _reg(self, operand: str) -> str:
        name = operand.lstrip("%")
        return REGISTER_ALIASES.get(name, name)

    def _value(self, operand: str) -> int:
        if operand.startswith("$"):
            return int(operand[1:], 0)
        return self.registers[self._reg(operand)]

    def _address(self, operand: str) -> int:
        if operand == "tape(%rip)":
            return 0
        parts = [part.strip() for part in operand.strip("()").split(",")]
        address = self.registers[self._reg(parts[0])] + self.registers[self._reg(parts[1])]
        return address & MASK64

    def run(self, max_steps: int = 100000) -> "AssemblySimulator":
        pc = 0
        for _ in range(max_steps):
            if self.exit_status is not None:
                return self
            op, *args = self.instructions[pc]
            pc += 1
            if op == "xor":
                self.registers[self._reg(args[1])] = 0
            elif op in ("mov", "movabs"):
                self.registers[self._reg(args[1])] = self._value(args[0])
            elif op == "lea":
                self.registers[self._reg(args[1])] = self._address(args[0])
            elif op == "add":
                dst = self._reg(args[1])
                self.registers[dst] = (self.registers[dst] + self._value(args[0])) & MASK64
            elif op == "sub":
                dst = self._reg(args[1])
                source = self._value(args[0])
                self.carry = self.registers[dst] < source
                self.registers[dst] = (self.registers[dst] - source) & MASK64
            elif op == "cmovae":
                if not self.carry:
                    self.registers[self._reg(args[1])] = self._value(args[0])
            elif op == "cmovb":
                if self.carry:
                    self.registers[self._reg(args[1])] = self._value(args[0])
            elif op == "addb":
                address = self._address(args[1])
                self.memory[address] = (self.memory[address] + self._value(args[0])) % 256
            elif op == "subb":
                address = self._address(args[1])
                self.memory[address] = (self.memory[address] - self._value(args[0])) % 256
            elif op == "cmpb":
                self.zero = self.memory[self._address(args[1])] == self._value(args[0])
            elif op == "je":
                if self.zero:
                    pc = self.labels[args[0]]
            elif op == "jne":
                if not self.zero:
                    pc = self.labels[args[0]]
            elif op == "syscall":
                self._syscall()
            else:
                raise AssertionError(f"unsupported instruction {op}")
        raise AssertionError("simulation step budget exhausted")

    def _syscall(self) -> None:
        number = self.registers["rax"]
        if number == 0:
            if self.input:
                self.memory[self.registers["rsi"]] = self.input.pop(0)
        elif number == 1:
            self.output.append(self.memory[self.registers["rsi"]])
        elif number == 60:
            self.exit_status = self.registers["rdi"]
        else:
            raise AssertionError(f"unsupported syscall {number}")
        self.registers["rcx"] = 0
        self.registers["r11"] = 0

    @property
    def pointer(self) -> int:
        return self.registers["r9"]


def simulate(source: str, tape_size: int, input_data: Sequence[int] = ()) -> AssemblySimulator:
    assembly = Translator(tape_size=tape_size).translate_to_string(source)
    return AssemblySimulator(assembly, input_data).run()


class EmittedAssemblyTests(unittest.TestCase):
    PROGRAMS = [
        ("+" * 70 + ">" * 7 + "+++" + "<" * 9 + ".>>.", 5, []),
        ("++++++[->>+++<<]>>.", 3, []),
        (",>,<.>.", 2, [7, 9]),
        (",>>,.", 2, [7, 9]),
        ("<<<+++>>>>.", 4, []),
        ("+[>>>+++<<<-]>>>." + ">" * 10 + "+.", 6, []),
        ("++[>++[>+++<-]<-]>>.", 30720, []),
        ("+>++<[>-]+.", 2, []),
        ("+>+><<[>]>+.", 3, []),
    ]

    def test_matches_reference_interpreter(self) -> None:
        for source, tape_size, input_data in self.PROGRAMS:
            with self.subTest(source=source, tape_size=tape_size):
                simulator = simulate(source, tape_size, input_data)
                expected = RunInterpreter(tape_size=tape_size).run(source, input_data=input_data)
                self.assertEqual(bytes(simulator.output), expected)
                self.assertEqual(simulator.exit_status, 0)

    def test_runtime_pointer_matches_tracked_pointer(self) -> None:
        for source, tape_size in [(">>>+>>>", 4), ("<" * 9, 4), (">" * 13 + "<" * 2, 5), ("<>", 1)]:
            with self.subTest(source=source):
                result = Translator(tape_size=tape_size).translate(source, _Discard())
                self.assertEqual(simulate(source, tape_size).pointer, result.final_pointer)

    def test_moves_inside_loops_wrap_at_runtime(self) -> None:
        self.assertEqual(bytes(simulate("+>++<[>-]+.", 2).output), b"\x01")
        # The loop leaves the pointer at 2 while the tracked pointer says 1.
        simulator = simulate("+>+><<[>]>+.", 3)
        self.assertEqual(bytes(simulator.output), b"\x02")
        self.assertEqual(simulator.pointer, 0)

    def test_wraps_on_largest_tape(self) -> None:
        simulator = simulate("<+.>.", MAX_TAPE_SIZE)
        self.assertEqual(bytes(simulator.output), b"\x01\x00")
        self.assertEqual(simulator.pointer, 0)
        self.assertEqual(simulator.memory[MAX_TAPE_SIZE - 1], 1)

    def test_repeated_reads_consume_input(self) -> None:
        simulator = simulate(",,,.", 10, [1, 2, 3, 4])
        self.assertEqual(bytes(simulator.output), b"\x03")
        self.assertEqual(simulator.input, [4])


class _Discard:
    def write(self, text: str) -> int:
        return len(text)


if __name__ == "__main__":
    unittest.main()
