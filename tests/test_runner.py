"""Tests for command execution, confirmation and dry-run."""

import logging

import pytest

from remote_luks.core.errors import EXIT_ABORTED, ExternalToolFailure, WorkflowAborted
from remote_luks.core.runner import (
    Command,
    CommandResult,
    CommandRunner,
    Confirmation,
    parse_confirmation,
    subprocess_executor,
)


class RecordingExecutor:
    """Executor returning canned results and recording every argv."""

    def __init__(self, returncode=0, stdout=""):
        self.returncode = returncode
        self.stdout = stdout
        self.calls = []

    def __call__(self, argv, capture):
        self.calls.append((argv, capture))
        return CommandResult(argv=argv, returncode=self.returncode, stdout=self.stdout)


def answers(*replies):
    """Prompt function replying with replies in order."""
    queue = list(replies)
    prompts = []

    def prompt(text):
        prompts.append(text)
        return queue.pop(0)

    prompt.prompts = prompts
    return prompt


class TestCommand:
    """Tests for the Command value type."""

    def test_argv_converted_to_strings(self, tmp_path):
        """Test that path arguments are stored as strings."""
        command = Command("List", ("ls", tmp_path))
        assert command.argv == ("ls", str(tmp_path))


class TestParseConfirmation:
    """Tests for parse_confirmation function."""

    @pytest.mark.parametrize("answer", ["", "y", "yes", "anything"])
    def test_proceed(self, answer):
        """Test that Enter and unknown answers proceed."""
        assert parse_confirmation(answer) is Confirmation.PROCEED

    @pytest.mark.parametrize("answer", ["s", "skip", " S "])
    def test_skip(self, answer):
        """Test skip answers."""
        assert parse_confirmation(answer) is Confirmation.SKIP

    @pytest.mark.parametrize("answer", ["a", "abort", "q", "quit", "Q"])
    def test_abort(self, answer):
        """Test abort answers."""
        assert parse_confirmation(answer) is Confirmation.ABORT


class TestCommandRunner:
    """Tests for CommandRunner.run."""

    def test_runs_command(self):
        """Test that a command is executed and its result returned."""
        executor = RecordingExecutor(stdout="/dev/loop3")
        runner = CommandRunner(executor=executor, is_root=True)

        result = runner.run(Command("Find", ("losetup", "-f"), capture=True))

        assert executor.calls == [(["losetup", "-f"], True)]
        assert result.ok
        assert result.stdout == "/dev/loop3"
        assert not result.skipped

    def test_failure_raises(self):
        """Test that a non-zero exit status raises with the tool's code."""
        runner = CommandRunner(executor=RecordingExecutor(returncode=32), is_root=True)

        with pytest.raises(ExternalToolFailure) as excinfo:
            runner.run(Command("Mount", ("mount", "a", "b")))

        assert excinfo.value.returncode == 32
        assert excinfo.value.exit_code == 32
        assert excinfo.value.argv == ["mount", "a", "b"]
        assert "Mount" in str(excinfo.value)

    def test_failure_without_check(self):
        """Test that check=False returns the failed result."""
        runner = CommandRunner(executor=RecordingExecutor(returncode=1), is_root=True)

        result = runner.run(Command("Probe", ("false",)), check=False)

        assert result.returncode == 1
        assert not result.ok

    def test_sudo_prefix_when_not_root(self):
        """Test that privileged commands get sudo when not running as root."""
        executor = RecordingExecutor()
        runner = CommandRunner(executor=executor, is_root=False)

        runner.run(Command("Mount", ("mount", "a", "b"), privileged=True))
        runner.run(Command("Copy", ("rsync", "a", "b")))

        assert executor.calls[0][0] == ["sudo", "mount", "a", "b"]
        assert executor.calls[1][0] == ["rsync", "a", "b"]

    def test_no_sudo_as_root(self):
        """Test that root runs privileged commands directly."""
        executor = RecordingExecutor()
        runner = CommandRunner(executor=executor, is_root=True)

        runner.run(Command("Mount", ("mount", "a", "b"), privileged=True))

        assert executor.calls[0][0] == ["mount", "a", "b"]

    def test_empty_argv_is_notice(self):
        """Test that a command without argv only shows its caption."""
        executor = RecordingExecutor()
        runner = CommandRunner(executor=executor, is_root=True)

        result = runner.run(Command("Key file already existing."))

        assert result.skipped
        assert executor.calls == []

    def test_dry_run_executes_nothing(self):
        """Test that dry-run reports commands without running them."""
        executor = RecordingExecutor()
        runner = CommandRunner(executor=executor, dry_run=True, is_root=False)

        result = runner.run(Command("Mount", ("mount", "a", "b"), privileged=True))

        assert result.skipped
        assert result.argv == ["sudo", "mount", "a", "b"]
        assert executor.calls == []


    def test_warn_shown_in_dry_run(self, caplog):
        """Test that destructive action notices are always logged."""
        runner = CommandRunner(dry_run=True, is_root=True)

        with caplog.at_level(logging.WARNING):
            runner.warn("This may overwrite your existing key file!")

        assert "WARNING: This may overwrite your existing key file!" in caplog.text

class TestConfirmation:
    """Tests for interactive confirmation mode."""

    def test_enter_runs(self):
        """Test that Enter runs the command."""
        executor = RecordingExecutor()
        prompt = answers("")
        runner = CommandRunner(
            confirm=True, executor=executor, prompt=prompt, is_root=True
        )

        result = runner.run(Command("List", ("ls",)))

        assert not result.skipped
        assert len(executor.calls) == 1
        assert len(prompt.prompts) == 1

    def test_skip_does_not_run(self):
        """Test that skipping returns without executing."""
        executor = RecordingExecutor()
        runner = CommandRunner(
            confirm=True, executor=executor, prompt=answers("s"), is_root=True
        )

        result = runner.run(Command("List", ("ls",)))

        assert result.skipped
        assert executor.calls == []

    def test_abort_raises(self):
        """Test that aborting raises WorkflowAborted."""
        executor = RecordingExecutor()
        runner = CommandRunner(
            confirm=True, executor=executor, prompt=answers("a"), is_root=True
        )

        with pytest.raises(WorkflowAborted) as excinfo:
            runner.run(Command("List", ("ls",)))

        assert excinfo.value.exit_code == EXIT_ABORTED
        assert executor.calls == []

    def test_end_of_input_aborts(self):
        """Test that a closed stdin aborts instead of proceeding."""

        def closed(text):
            raise EOFError

        executor = RecordingExecutor()
        runner = CommandRunner(
            confirm=True, executor=executor, prompt=closed, is_root=True
        )

        with pytest.raises(WorkflowAborted):
            runner.run(Command("List", ("ls",)))
        assert executor.calls == []

    def test_unconfirmed_commands_skip_prompt(self):
        """Test that commands marked confirm=False are not asked about."""
        executor = RecordingExecutor()
        prompt = answers()
        runner = CommandRunner(
            confirm=True, executor=executor, prompt=prompt, is_root=True
        )

        runner.run(Command("Load module", ("modprobe", "dm-mod"), confirm=False))

        assert prompt.prompts == []
        assert len(executor.calls) == 1

    def test_confirm_with_dry_run(self):
        """Test that a confirmed command is still not executed in dry-run."""
        executor = RecordingExecutor()
        runner = CommandRunner(
            confirm=True,
            dry_run=True,
            executor=executor,
            prompt=answers(""),
            is_root=True,
        )

        result = runner.run(Command("List", ("ls",)))

        assert result.skipped
        assert executor.calls == []


class TestSubprocessExecutor:
    """Tests for the real subprocess executor."""

    def test_captures_output(self):
        """Test capturing stdout of a real process."""
        result = subprocess_executor(["echo", "hello"], True)
        assert result.ok
        assert result.stdout == "hello"

    def test_exit_status(self):
        """Test that the exit status is reported."""
        result = subprocess_executor(["false"], False)
        assert result.returncode != 0

    def test_missing_program(self):
        """Test that a missing program reports status 127."""
        result = subprocess_executor(["remote-luks-no-such-program"], False)
        assert result.returncode == 127
