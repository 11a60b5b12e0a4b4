import io
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "installers" / "bootstrap"))
sys.path.insert(0, str(ROOT / "packages" / "core"))

from puli_bootstrap import cli
from puli_bootstrap.cli import Console, OutputMode, build_parser, main, options_from_args
from puli_bootstrap.service import InstallPhase, InstallResult, InstallStatus
from puli_core.logging_setup import reset_logging


class _FakeOrchestrator:
    result = None
    instances = []

    def __init__(self, options, progress=None):
        self.options = options
        self.progress = progress
        _FakeOrchestrator.instances.append(self)

    def run(self):
        self.progress("Downloading...")
        return _FakeOrchestrator.result


class _TtyStream(io.StringIO):
    def isatty(self):
        return True


class ParserTests(unittest.TestCase):
    def test_defaults(self):
        args = build_parser().parse_args([])
        options = options_from_args(args)
        self.assertEqual(options.filename, "puli.phar")
        self.assertEqual(options.stability, "unstable")
        self.assertIsNone(options.version)
        self.assertIsNone(options.install_dir)
        self.assertFalse(options.disable_tls)
        self.assertIsNone(args.ansi)

    def test_install_flags(self):
        args = build_parser().parse_args(
            [
                "--install-dir", "/opt/bin",
                "--version", " 1.0.0-beta9 ",
                "--filename", "puli",
                "--cafile", "/etc/ca.pem",
                "--disable-tls",
                "--stable",
                "--quiet",
                "--force",
            ]
        )
        options = options_from_args(args)
        self.assertEqual(options.install_dir, Path("/opt/bin"))
        self.assertEqual(options.version, "1.0.0-beta9")
        self.assertEqual(options.filename, "puli")
        self.assertEqual(options.cafile, Path("/etc/ca.pem"))
        self.assertTrue(options.disable_tls)
        self.assertEqual(options.stability, "stable")
        self.assertTrue(options.quiet)
        self.assertTrue(options.force)

    def test_stability_flags_are_exclusive(self):
        with patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["--stable", "--unstable"])

    def test_ansi_flags(self):
        self.assertTrue(build_parser().parse_args(["--ansi"]).ansi)
        self.assertFalse(build_parser().parse_args(["--no-ansi"]).ansi)


class OutputModeTests(unittest.TestCase):
    def test_explicit_choice_wins(self):
        self.assertIs(OutputMode.detect(True, io.StringIO()), OutputMode.ANSI)
        self.assertIs(OutputMode.detect(False, _TtyStream()), OutputMode.PLAIN)

    @unittest.skipIf(sys.platform.startswith("win"), "tty detection is posix only")
    def test_tty_detection(self):
        self.assertIs(OutputMode.detect(None, _TtyStream()), OutputMode.ANSI)
        self.assertIs(OutputMode.detect(None, io.StringIO()), OutputMode.PLAIN)

    def test_console_colors(self):
        stream = io.StringIO()
        Console(OutputMode.ANSI, stream).error("boom")
        Console(OutputMode.PLAIN, stream).error("boom")
        self.assertEqual(stream.getvalue(), "\033[31;31mboom\033[0m\nboom\n")


class MainTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        _FakeOrchestrator.instances = []
        patcher = patch.object(cli, "InstallOrchestrator", _FakeOrchestrator)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        reset_logging()
        self._tmp.cleanup()

    def _main(self, argv):
        stdout = io.StringIO()
        with patch("sys.stdout", stdout):
            code = main(argv + ["--no-ansi"])
        return code, stdout.getvalue()

    def test_check_with_valid_options(self):
        code, out = self._main(["--check", "--install-dir", str(self.root)])
        self.assertEqual(code, 0)
        self.assertIn("All settings correct for using Puli", out)
        self.assertEqual(_FakeOrchestrator.instances, [])

    def test_check_reports_problems(self):
        code, out = self._main(["--check", "--install-dir", str(self.root / "missing"), "--version", "latest"])
        self.assertEqual(code, 1)
        self.assertIn("does not exist", out)
        self.assertIn("does not match release pattern", out)

    def test_successful_install(self):
        target = self.root / "puli.phar"
        _FakeOrchestrator.result = InstallResult(
            status=InstallStatus.SUCCESS,
            phase=InstallPhase.FINALIZED,
            version="1.0.0",
            path=target,
            messages=(f"Puli successfully installed to: {target}", f"Use it: php {target}"),
        )
        code, out = self._main(["--install-dir", str(self.root)])
        self.assertEqual(code, 0)
        self.assertEqual(out, f"Downloading...\n\nPuli successfully installed to: {target}\nUse it: php {target}\n")

    def test_quiet_success_prints_nothing_extra(self):
        _FakeOrchestrator.result = InstallResult(status=InstallStatus.SUCCESS, phase=InstallPhase.FINALIZED, messages=("done",))
        code, out = self._main(["--quiet"])
        self.assertEqual(code, 0)
        self.assertEqual(out, "Downloading...\n")

    def test_failure_prints_errors(self):
        _FakeOrchestrator.result = InstallResult(
            status=InstallStatus.DOWNLOAD_FAILED,
            phase=InstallPhase.DOWNLOADING,
            messages=("The download failed repeatedly, aborting.",),
        )
        code, out = self._main([])
        self.assertEqual(code, 1)
        self.assertIn("The download failed repeatedly, aborting.", out)

    def test_disable_tls_prints_warning(self):
        code, out = self._main(["--check", "--disable-tls"])
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("You have instructed the Installer not to enforce SSL/TLS security"))


if __name__ == "__main__":
    unittest.main()
