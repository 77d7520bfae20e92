"""Shared fixtures: a project directory with raw genotypes and a fake tool runner."""

from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional, Sequence, Tuple

import pytest
import yaml

from snp_impute.config import load_config
from snp_impute.tools import ExternalTool, Toolchain, ToolResult

RAW_MARKERS = ("rs1", "rs2", "rs3", "rsX")


def write_bim(prefix: Path, markers: Sequence[str], chromosome: str = "1", start: int = 99800) -> None:
    lines = [f"{chromosome}\t{marker}\t0\t{start + 100 * i}\tA\tG" for i, marker in enumerate(markers)]
    prefix.with_name(prefix.name + ".bim").write_text("\n".join(lines) + "\n")


def write_dataset(prefix: Path, markers: Sequence[str]) -> None:
    prefix.parent.mkdir(parents=True, exist_ok=True)
    prefix.with_name(prefix.name + ".bed").write_bytes(b"\x6c\x1b\x01")
    prefix.with_name(prefix.name + ".fam").write_text("fam1 ind1 0 0 1 -9\n")
    write_bim(prefix, markers)


class FakeRunner:
    """Record every invocation and write the files the real tool would produce."""

    def __init__(self, fail_at: Optional[int] = None, exit_code: int = 1, silent_at: Optional[int] = None):
        self.calls: List[Tuple[str, List[str], Path]] = []
        self.fail_at = fail_at
        self.exit_code = exit_code
        # Call number that exits 0 without writing anything.
        self.silent_at = silent_at

    @property
    def tools_called(self) -> List[str]:
        return [name for name, _, _ in self.calls]

    def run(self, tool: ExternalTool, args: Sequence[str], cwd: Path) -> ToolResult:
        args = [str(arg) for arg in args]
        self.calls.append((tool.name, args, Path(cwd)))
        if self.fail_at is not None and len(self.calls) == self.fail_at:
            return ToolResult(tool=tool, exit_code=self.exit_code)
        if self.silent_at is not None and len(self.calls) == self.silent_at:
            return ToolResult(tool=tool, exit_code=0)
        if tool.name == "plink":
            self._plink(args)
        elif "-O" in args:
            out = Path(args[args.index("-O") + 1])
            for suffix in (".haps", ".sample"):
                out.with_name(out.name + suffix).write_text("")
        elif "--output-vcf" in args:
            Path(args[args.index("--output-vcf") + 1]).write_text("##fileformat=VCFv4.1\n")
        elif "--prefix" in args:
            prefix = Path(args[args.index("--prefix") + 1])
            for suffix in (".dose.vcf.gz", ".info"):
                prefix.with_name(prefix.name + suffix).write_text("")
        return ToolResult(tool=tool, exit_code=0)

    @staticmethod
    def _plink(args: List[str]) -> None:
        source = Path(args[args.index("--bfile") + 1])
        out = Path(args[args.index("--out") + 1])
        markers = [line.split()[1] for line in source.with_name(source.name + ".bim").read_text().splitlines()]
        if "--exclude-snp" in args:
            markers = [m for m in markers if m != args[args.index("--exclude-snp") + 1]]
        write_dataset(out, markers)
        out.with_name(out.name + ".log").write_text("PLINK log\n")


@pytest.fixture
def toolchain() -> Toolchain:
    return Toolchain(
        plink=ExternalTool("plink", "/opt/tools/plink"),
        shapeit=ExternalTool("shapeit", "/opt/tools/shapeit"),
        minimac=ExternalTool("Minimac3", "/opt/tools/Minimac3"),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def project(tmp_path):
    """A project root with a config and the raw ``chip`` genotype triple."""
    root = tmp_path / "project"
    root.mkdir()
    config_path = root / "run.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "snp": "rsX",
                "chromosome": 1,
                "position": 100000,
                "window_size": 500,
                "refhaps": "panelA",
            }
        )
    )
    genotypes = root / "chip"
    write_dataset(genotypes, RAW_MARKERS)
    return SimpleNamespace(root=root, config_path=config_path, genotypes=genotypes, config=load_config(config_path))
