from __future__ import annotations

import argparse
import io
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from .config import DEFAULT_TAPE_SIZE, MAX_RUN_TAPE_SIZE
from .interpreter import RunInterpreter, StepLimitExceeded
from .toolchain import OutputKind, ToolchainError, build, derive_output_path
from .translator import TranslationError, Translator

logger = logging.getLogger("bfasm")


def _read_source(path: str) -> str:
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    return source_path.read_text(encoding="utf-8")


def _to_input_bytes(data: str) -> Iterable[int]:
    return [ord(ch) % 256 for ch in data]


def _output_kinds(args: argparse.Namespace) -> List[OutputKind]:
    kinds: List[OutputKind] = []
    if args.assembly:
        kinds.append(OutputKind.ASSEMBLY)
    if args.object:
        kinds.append(OutputKind.OBJECT)
    if not kinds:
        kinds.append(OutputKind.EXECUTABLE)
    return kinds


def _compile_file(path: str, args: argparse.Namespace, translator: Translator, multiple: bool) -> None:
    output = derive_output_path(path, args.output, multiple)
    logger.debug("Opening '%s'", path)
    with open(path, encoding="utf-8") as source:
        buffer = io.StringIO()
        translator.translate(source, buffer)
    logger.debug("Parsing '%s' and generating assembly completed", path)
    for artifact in build(buffer.getvalue(), output, _output_kinds(args)):
        logger.debug("Wrote '%s'", artifact)


def _run_file(path: str, args: argparse.Namespace, translator: Translator) -> None:
    interpreter = RunInterpreter(tape_size=translator.tape_size)
    output = interpreter.run(
        _read_source(path),
        input_data=_to_input_bytes(args.input),
        max_steps=args.max_steps,
    )
    sys.stdout.write(output.decode("latin-1"))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="bfasm",
        description="Compile tape-language programs to x86-64 Linux executables",
    )
    parser.add_argument("sources", nargs="*", help="Source files with .bf extension")
    parser.add_argument(
        "-o",
        dest="output",
        help="Name of the output file (source name without .bf by default); "
        "ignored when more than one source file is given",
    )
    parser.add_argument("-v", dest="verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "-S",
        dest="assembly",
        action="store_true",
        help="Generate .s files with the GNU assembly translation",
    )
    parser.add_argument("-c", dest="object", action="store_true", help="Generate object files")
    parser.add_argument(
        "-s",
        dest="tape_size",
        type=int,
        default=DEFAULT_TAPE_SIZE,
        help=f"Size of the tape in bytes (default: {DEFAULT_TAPE_SIZE})",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Execute the program with the reference interpreter instead of building it",
    )
    parser.add_argument("--input", default="", help="Input string supplied to the program with --run")
    parser.add_argument("--max-steps", type=int, default=None, help="Step budget for --run")
    args = parser.parse_args(argv)

    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger("bfasm").setLevel(logging.DEBUG if args.verbose else logging.INFO)

    if not args.sources:
        print("Nothing to do. Try 'bfasm -h'")
        return 0

    translator = Translator(tape_size=args.tape_size)
    if args.run and translator.tape_size > MAX_RUN_TAPE_SIZE:
        print(
            f"error: --run supports tapes of at most {MAX_RUN_TAPE_SIZE} bytes, got {translator.tape_size}",
            file=sys.stderr,
        )
        return 1
    multiple = len(args.sources) > 1
    failed = False
    for path in args.sources:
        try:
            if args.run:
                _run_file(path, args, translator)
            else:
                _compile_file(path, args, translator, multiple)
        except TranslationError as exc:
            print(f"{path}:{exc.line}:{exc.column}: error: {exc.message}", file=sys.stderr)
            failed = True
        except FileNotFoundError as exc:
            print(str(exc), file=sys.stderr)
            failed = True
        except (OSError, ValueError, ToolchainError, StepLimitExceeded) as exc:
            print(f"{path}: error: {exc}", file=sys.stderr)
            failed = True
        else:
            logger.debug("Compilation of '%s' completed", path)

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
