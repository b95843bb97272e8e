from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".bf"
ASSEMBLER = "as"
LINKER = "ld"


class ToolchainError(RuntimeError):
    """Raised when the external assembler or linker cannot produce its output."""


class OutputKind(str, Enum):
    ASSEMBLY = "assembly"
    OBJECT = "object"
    EXECUTABLE = "executable"


def derive_output_path(source: str, output: Optional[str] = None, multiple: bool = False) -> Path:
    """Pick the base output path for ``source``.

    An explicit ``output`` only applies when a single source is compiled.
    Otherwise the source name without its ``.bf`` suffix is used in the
    current working directory.
    """
    if output and not multiple:
        return Path(output)
    source_path = Path(source)
    if source_path.suffix != SOURCE_SUFFIX:
        raise ValueError(
            f"this file does not have {SOURCE_SUFFIX} extension; "
            f"only {SOURCE_SUFFIX} source files are accepted"
        )
    return Path.cwd() / source_path.stem


def run_command(args: Sequence[str]) -> None:
    command = " ".join(args)
    logger.debug("Executing '%s'", command)
    try:
        completed = subprocess.run(list(args), check=False)
    except OSError as exc:
        raise ToolchainError(f"unable to execute '{command}': {exc}") from exc
    if completed.returncode != 0:
        raise ToolchainError(f"{args[0]}: '{command}' exited with status {completed.returncode}")


def assemble(asm_path: Path, obj_path: Path) -> None:
    run_command([ASSEMBLER, str(asm_path), "-o", str(obj_path)])


def link(obj_path: Path, exe_path: Path) -> None:
    run_command([LINKER, str(obj_path), "-o", str(exe_path)])


def build(assembly: str, output: Path, kinds: Sequence[OutputKind]) -> List[Path]:
    """Produce the requested artifacts from ``assembly`` next to ``output``.

    Intermediate files live in a temporary directory that is removed even
    when the assembler or linker fails.
    """
    produced: List[Path] = []
    with tempfile.TemporaryDirectory(prefix="bfasm-") as tmp:
        tmp_dir = Path(tmp)
        asm_path = tmp_dir / "program.s"
        logger.debug("Creating '%s'", asm_path)
        asm_path.write_text(assembly, encoding="utf-8")

        if OutputKind.ASSEMBLY in kinds:
            target = output.with_name(output.name + ".s")
            logger.debug("Copying '%s' to '%s'", asm_path, target)
            shutil.copyfile(asm_path, target)
            produced.append(target)

        needs_object = OutputKind.OBJECT in kinds or OutputKind.EXECUTABLE in kinds
        if needs_object:
            obj_path = tmp_dir / "program.o"
            assemble(asm_path, obj_path)
            if OutputKind.OBJECT in kinds:
                target = output.with_name(output.name + ".o")
                logger.debug("Copying '%s' to '%s'", obj_path, target)
                shutil.copyfile(obj_path, target)
                produced.append(target)
            if OutputKind.EXECUTABLE in kinds:
                link(obj_path, output)
                produced.append(output)
        logger.debug("Removing '%s'", tmp_dir)
    return produced


__all__ = [
    "OutputKind",
    "ToolchainError",
    "assemble",
    "build",
    "derive_output_path",
    "link",
    "run_command",
]
