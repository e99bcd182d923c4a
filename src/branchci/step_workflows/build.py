from __future__ import annotations

from ..model import Step


# build manager -> (build command, test command, verbose flag, default args)
BUILD_MANAGERS: dict[str, tuple[str, str, str, str]] = {
    "cargo": ("cargo build", "cargo test", "--verbose", ""),
    "go": ("go build", "go test", "-v", "./..."),
    "npm": ("npm run build", "npm test", "--loglevel verbose", ""),
    "make": ("make", "make test", "V=1", ""),
    "gradle": ("gradle build", "gradle test", "--info", ""),
}


def _command(tool: str, action: int, verbose: bool, args: str | None) -> str:
    try:
        spec = BUILD_MANAGERS[tool]
    except KeyError:
        raise ValueError(
            f"Unknown build manager: {tool!r}. Known: {sorted(BUILD_MANAGERS)}"
        ) from None
    base, flag, default_args = spec[action], spec[2], spec[3]
    parts = [base]
    if verbose:
        parts.append(flag)
    extra = (args if args is not None else default_args).strip()
    if extra:
        parts.append(extra)
    return " ".join(parts)


def build_step(
    tool: str = "cargo",
    *,
    name: str = "Build",
    verbose: bool = True,
    args: str | None = None,
    cwd: str | None = None,
) -> Step:
    """The build manager's build action, e.g. `cargo build --verbose`."""
    return Step(name=name, run=_command(tool, 0, verbose, args), cwd=cwd)


def test_step(
    tool: str = "cargo",
    *,
    name: str = "Run tests",
    verbose: bool = True,
    args: str | None = None,
    cwd: str | None = None,
) -> Step:
    """The build manager's test action, e.g. `cargo test --verbose`."""
    return Step(name=name, run=_command(tool, 1, verbose, args), cwd=cwd)
