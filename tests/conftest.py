"""Pytest configuration and shared fixtures."""

import os
import shutil
from pathlib import Path

import pytest

from remote_luks.config.schema import (
    Config,
    GeneralConfig,
    PathsConfig,
    RemoteConfig,
    RsyncConfig,
)
from remote_luks.core.layers import Context
from remote_luks.core.runner import CommandResult, CommandRunner
from remote_luks.core.state import StateStore


class FakeSystem:
    """Stand-in for the external tools, simulating their effect on disk.

    Mounts are recorded in a private mount table file and unlocked volumes
    as files in a private device mapper directory. The content of the
    encrypted file system is kept in ``volume_data`` while it is unmounted.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.mounts_file = root / "mounts"
        self.mounts_file.write_text("proc /proc proc rw 0 0\n")
        self.mapper_dir = root / "mapper"
        self.mapper_dir.mkdir()
        self.volume_data = root / "volume-data"
        self.volume_data.mkdir()
        self.calls: list[list[str]] = []
        self.loops: dict[str, str] = {}
        self.formatted: set[str] = set()
        self.remote_reachable = True
        self._failures: list[tuple[list[str], int]] = []
        self._exceptions: list[tuple[list[str], BaseException]] = []

    # -- helpers for tests --

    def fail(self, *prefix: str, returncode: int = 1) -> None:
        """Make every command starting with prefix exit with returncode."""
        self._failures.append((list(prefix), returncode))

    def raise_on(self, *prefix: str, exc: BaseException) -> None:
        """Make every command starting with prefix raise exc."""
        self._exceptions.append((list(prefix), exc))

    def mounted(self) -> set[str]:
        lines = self.mounts_file.read_text().splitlines()
        return {line.split()[1] for line in lines if line.split()[0] != "proc"}

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    # -- executor --

    def __call__(self, argv: list[str], capture: bool) -> CommandResult:
        if argv[0] == "sudo":
            argv = argv[1:]
        self.calls.append(list(argv))
        for prefix, exc in self._exceptions:
            if argv[: len(prefix)] == prefix:
                raise exc
        for prefix, returncode in self._failures:
            if argv[: len(prefix)] == prefix:
                return CommandResult(argv=argv, returncode=returncode)

        program = argv[0]
        handler = getattr(self, "_" + program.replace(".", "_").replace("-", "_"), None)
        if handler is None:
            return CommandResult(argv=argv, returncode=127)
        returncode, stdout = handler(argv[1:])
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout)

    def _add_mount(self, source: str, target: str, fstype: str) -> None:
        # the kernel records targets with symlinks resolved
        target = os.path.realpath(target)
        with open(self.mounts_file, "a") as f:
            f.write(f"{source} {target} {fstype} rw 0 0\n")

    def _remove_mount(self, target: str) -> bool:
        target = os.path.realpath(target)
        lines = self.mounts_file.read_text().splitlines()
        kept = [line for line in lines if line.split()[1] != target]
        self.mounts_file.write_text("".join(line + "\n" for line in kept))
        return len(kept) != len(lines)

    @staticmethod
    def _options(args: list[str]) -> dict[str, str]:
        return dict(arg.split("=", 1) for arg in args if "=" in arg)

    def _mkdir(self, args):
        Path(args[-1]).mkdir(parents=True, exist_ok=True)
        return 0, ""

    def _modprobe(self, args):
        return 0, ""

    def _chmod(self, args):
        os.chmod(args[1], int(args[0], 8))
        return 0, ""

    def _chown(self, args):
        return 0, ""

    def _sshfs(self, args):
        if not self.remote_reachable:
            return 1, ""
        target = args[-1]
        if os.path.realpath(target) in self.mounted():
            return 1, ""
        self._add_mount(args[-2], target, "fuse.sshfs")
        return 0, ""

    def _fusermount(self, args):
        return (0, "") if self._remove_mount(args[-1]) else (1, "")

    def _dd(self, args):
        opts = self._options(args)
        out = Path(opts["of"])
        if opts["if"] == "/dev/urandom":
            out.write_bytes(os.urandom(int(opts["bs"]) * int(opts["count"])))
        else:
            with open(out, "wb") as f:
                f.truncate(int(opts.get("seek", "0")))
        return 0, ""

    def _losetup(self, args):
        if args == ["--detach-all"]:
            self.loops.clear()
            return 0, ""
        if args[0] == "--detach":
            return (0, "") if self.loops.pop(args[1], None) else (1, "")
        if args[:2] == ["--find", "--show"]:
            image = args[2]
            if not Path(image).is_file():
                return 1, ""
            device = f"/dev/loop{len(self.loops)}"
            self.loops[device] = image
            return 0, device + "\n"
        return 1, ""

    def _cryptsetup(self, args):
        action = args[0]
        if action == "luksFormat":
            image = self.loops.get(args[1])
            if image is None:
                return 1, ""
            self.formatted.add(image)
            return 0, ""
        if action == "luksOpen":
            device, name, key = args[1], args[2], args[4]
            image = self.loops.get(device)
            if image not in self.formatted or not Path(key).is_file():
                return 2, ""
            node = self.mapper_dir / name
            if node.exists():
                return 5, ""
            node.write_text(device)
            return 0, ""
        if action == "luksClose":
            node = self.mapper_dir / args[1]
            if not node.exists():
                return 4, ""
            node.unlink()
            return 0, ""
        return 1, ""

    def _mkfs_ext4(self, args):
        return (0, "") if Path(args[-1]).exists() else (1, "")

    def _mount(self, args):
        node, target = args
        if not Path(node).exists() or os.path.realpath(target) in self.mounted():
            return 32, ""
        self._add_mount(node, target, "ext4")
        shutil.copytree(self.volume_data, target, dirs_exist_ok=True)
        return 0, ""

    def _umount(self, args):
        target = args[0]
        if not self._remove_mount(target):
            return 32, ""
        shutil.rmtree(self.volume_data)
        shutil.copytree(target, self.volume_data)
        for child in Path(target).iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        return 0, ""

    def _rsync(self, args):
        excludes = [a.split("=", 1)[1] for a in args if a.startswith("--exclude=")]
        source, target = args[-2], args[-1]
        shutil.copytree(
            source.rstrip("/"),
            target,
            ignore=shutil.ignore_patterns(*excludes),
            dirs_exist_ok=True,
        )
        return 0, ""


@pytest.fixture
def fake_system(tmp_path):
    """Simulated external tools."""
    root = tmp_path / "system"
    root.mkdir()
    return FakeSystem(root)


@pytest.fixture
def source_dir(tmp_path):
    """A small directory tree to back up."""
    source = tmp_path / "source"
    (source / "docs").mkdir(parents=True)
    (source / "docs" / "letter.txt").write_text("dear server admin")
    (source / "notes.md").write_text("# notes")
    (source / "lost+found").mkdir()
    (source / "lost+found" / "junk").write_text("junk")
    return source


@pytest.fixture
def config(tmp_path, source_dir):
    """A configured Config working inside tmp_path."""
    return Config(
        general=GeneralConfig(configured=True, show_status=False),
        remote=RemoteConfig(location="backup@server:/srv/remote_luks/"),
        paths=PathsConfig(working_dir=str(tmp_path / "work"), key_size=256),
        rsync=RsyncConfig(source=f"{source_dir}/"),
    )


@pytest.fixture
def make_ctx(config, fake_system):
    """Build a Context wired to the fake system."""

    def _make(cfg=None, **runner_kwargs):
        cfg = cfg or config
        runner_kwargs.setdefault("executor", fake_system)
        runner_kwargs.setdefault("is_root", True)
        return Context(
            config=cfg,
            runner=CommandRunner(**runner_kwargs),
            state=StateStore(cfg.state_file),
            mounts_file=fake_system.mounts_file,
            mapper_dir=fake_system.mapper_dir,
        )

    return _make


@pytest.fixture
def ctx(make_ctx):
    """Context with confirmation and dry-run disabled."""
    return make_ctx()


@pytest.fixture
def sample_config_toml(tmp_path):
    """Return a sample valid TOML configuration string."""
    return f"""
[general]
configured = true
confirm_every_command = false
use_colors = false
show_status = true
load_kernel_modules = false

[image]
size = "20M"
size_base = 1000
prefix = "offsite"
volume_name = "Offsite"
filesystem = "ext4"

[remote]
location = "backup@server:/srv/remote_luks/"
sshfs_options = ["-p", "2222"]

[paths]
working_dir = "{tmp_path / 'work'}"
key_size = 512

[rsync]
source = "{tmp_path}/"
options = ["-a", "--delete"]
exclude = ["lost+found", "*.tmp"]
"""


@pytest.fixture
def config_file(tmp_path, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_path = config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path
