"""Tests for host and WSL command execution."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wslcompact.executor import LocalExecutor, LocalProcess, WslExecutor, _decode
from wslcompact.models import CommandResult


def _fake_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


class TestDecode:
    def test_utf8(self) -> None:
        assert _decode("größe\n".encode()) == "größe\n"

    def test_utf16_from_wsl_exe(self) -> None:
        """wsl.exe's own messages arrive as UTF-16LE."""
        assert _decode("There is no distribution".encode("utf-16-le")) == "There is no distribution"

    def test_empty(self) -> None:
        assert _decode(b"") == ""
        assert _decode(None) == ""


class TestLocalExecutor:
    @pytest.mark.asyncio
    async def test_run_args_captures_output(self) -> None:
        proc = _fake_proc(stdout=b"ok\n", stderr=b"warn\n", returncode=3)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            result = await LocalExecutor().run_args(["powershell.exe", "-Command", "exit 3"])

        assert result == CommandResult(exit_code=3, stdout="ok\n", stderr="warn\n")
        assert spawn.await_args.args == ("powershell.exe", "-Command", "exit 3")
        assert "start_new_session" not in spawn.await_args.kwargs
        assert "creationflags" not in spawn.await_args.kwargs

    @pytest.mark.asyncio
    async def test_run_args_timeout_terminates(self) -> None:
        proc = _fake_proc()

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = AsyncMock(side_effect=hang)
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)),
            pytest.raises(TimeoutError),
        ):
            await LocalExecutor().run_args(["sleep", "10"], timeout=0.01)

        proc.terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_isolated_start_uses_new_process_group(self) -> None:
        """Isolated processes do not receive the console's Ctrl+C."""
        proc = _fake_proc()
        proc.returncode = None
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            process = await LocalExecutor().start_args(["diskpart.exe", "/s", "script.txt"], isolate=True)

        kwargs = spawn.await_args.kwargs
        assert kwargs.get("start_new_session") or kwargs.get("creationflags")
        assert isinstance(process, LocalProcess)
        assert process.running


class TestLocalProcess:
    @pytest.mark.asyncio
    async def test_terminate_only_running(self) -> None:
        proc = _fake_proc(returncode=0)
        await LocalProcess(proc).terminate()
        proc.terminate.assert_not_called()
        proc.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wait_returns_result(self) -> None:
        proc = _fake_proc(stdout=b"done\n", returncode=0)
        assert await LocalProcess(proc).wait() == CommandResult(exit_code=0, stdout="done\n", stderr="")


class TestWslExecutor:
    """Commands are wrapped in wsl.exe and run as root."""

    def _local(self) -> MagicMock:
        local = MagicMock()
        local.run_args = AsyncMock(return_value=CommandResult(exit_code=0, stdout="", stderr=""))
        local.start_args = AsyncMock()
        return local

    @pytest.mark.asyncio
    async def test_default_distribution(self) -> None:
        local = self._local()
        await WslExecutor(local=local).run_command("rm -f /zero.fill", timeout=5)

        local.run_args.assert_awaited_once_with(
            ["wsl.exe", "--user", "root", "--exec", "sh", "-c", "rm -f /zero.fill"], timeout=5
        )

    @pytest.mark.asyncio
    async def test_named_distribution(self) -> None:
        local = self._local()
        await WslExecutor("Ubuntu-24.04", local=local).start_process("dd if=/dev/zero of=/zero.fill")

        args = local.start_args.await_args.args[0]
        assert args[:3] == ["wsl.exe", "--distribution", "Ubuntu-24.04"]
        assert args[-1] == "dd if=/dev/zero of=/zero.fill"

    @pytest.mark.asyncio
    async def test_shutdown(self) -> None:
        local = self._local()
        await WslExecutor("Ubuntu", local=local).shutdown()
        assert local.run_args.await_args.args[0] == ["wsl.exe", "--shutdown"]
