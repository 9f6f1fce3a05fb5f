import base64
import tempfile
import unittest
from pathlib import Path
from unittest.mock import call, patch

from typer.testing import CliRunner

from cli.core import config, session
from cli.main import app

runner = CliRunner()


class CliTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        app_dir = Path(self.tmp.name) / ".ubaa"
        patchers = [
            patch("cli.core.config.APP_DIR", app_dir),
            patch("cli.core.config.SESSION_FILE", app_dir / "session.json"),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)
        self.addCleanup(self.tmp.cleanup)


class TestAuthCommands(CliTestCase):

    @patch("cli.auth.commands.getpass.getpass", return_value="p1")
    @patch("cli.auth.commands.api_login")
    def test_login_success(self, mock_login, mock_getpass):
        mock_login.return_value = ({"user": {"name": "Li", "schoolid": "24182104"}, "token": "tok-1"}, None)

        result = runner.invoke(app, ["auth", "login", "--username", "u1"])

        self.assertEqual(result.exit_code, 0)
        self.assertIn("Login successful as 'u1' (Li)", result.stdout)
        mock_login.assert_called_once_with("u1", "p1")
        self.assertEqual(session.load_token(), "tok-1")
        self.assertEqual(session.load_username(), "u1")

    @patch("cli.auth.commands.getpass.getpass", return_value="bad")
    @patch("cli.auth.commands.api_login")
    def test_login_failure(self, mock_login, mock_getpass):
        mock_login.return_value = (None, "密码错误")

        result = runner.invoke(app, ["auth", "login", "-u", "u1"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Login failed: 密码错误", result.stdout)
        self.assertFalse(session.is_logged_in())

    @patch("cli.auth.commands.api_login")
    def test_login_rejects_malformed_username(self, mock_login):
        result = runner.invoke(app, ["auth", "login", "-u", "a b"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid username", result.stdout)
        mock_login.assert_not_called()

    @patch("cli.auth.commands.getpass.getpass", return_value="p1")
    @patch("cli.auth.commands.api_login")
    def test_login_accepts_short_and_opaque_usernames(self, mock_login, mock_getpass):
        mock_login.return_value = ({"user": {"name": "Li", "schoolid": "1"}, "token": "tok-1"}, None)

        for username in ["u1", "a", "SY2406123", "li.wei@buaa"]:
            with self.subTest(username=username):
                session.clear_token()
                result = runner.invoke(app, ["auth", "login", "-u", username])

                self.assertEqual(result.exit_code, 0)
                mock_login.assert_called_with(username, "p1")

    @patch("cli.auth.commands.api_login")
    def test_login_rejects_overlong_username(self, mock_login):
        result = runner.invoke(app, ["auth", "login", "-u", "x" * 65])

        self.assertEqual(result.exit_code, 1)
        mock_login.assert_not_called()

    @patch("cli.auth.commands.getpass.getpass", return_value="p1")
    @patch("cli.auth.commands.api_login")
    def test_login_with_captcha(self, mock_login, mock_getpass):
        image = b"\xff\xd8fake-jpeg"
        challenge = {
            "error": {"code": "captcha_required", "message": "CAPTCHA verification required"},
            "captcha": {"id": "cap-1", "type": "image", "image_url": "-", "base64_image": base64.b64encode(image).decode()},
            "execution": "exec123",
            "client_id": "c1",
        }
        mock_login.side_effect = [
            (challenge, None),
            ({"user": {"name": "Li", "schoolid": "24182104"}, "token": "tok-1"}, None),
        ]

        result = runner.invoke(app, ["auth", "login", "-u", "u1"], input="x7k2\n")

        self.assertEqual(result.exit_code, 0)
        self.assertIn("Captcha required", result.stdout)
        self.assertEqual(mock_login.call_args_list[1], call("u1", "p1", captcha="x7k2", execution="exec123", client_id="c1"))
        self.assertEqual((config.APP_DIR / "captcha.jpg").read_bytes(), image)
        self.assertEqual(session.load_token(), "tok-1")

    @patch("cli.auth.commands.getpass.getpass", return_value="p1")
    @patch("cli.auth.commands.api_get_captcha", return_value=None)
    @patch("cli.auth.commands.api_login")
    def test_login_captcha_image_unavailable(self, mock_login, mock_captcha, mock_getpass):
        mock_login.return_value = ({"captcha": {"id": "cap-1"}, "execution": "e1", "client_id": "c1"}, None)

        result = runner.invoke(app, ["auth", "login", "-u", "u1"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Could not fetch the captcha image", result.stdout)
        mock_captcha.assert_called_once_with("cap-1", "c1")
        self.assertFalse(session.is_logged_in())

    @patch("cli.auth.commands.api_login")
    def test_login_refused_when_already_logged_in(self, mock_login):
        session.save_token("tok-1", "u1")

        result = runner.invoke(app, ["auth", "login", "-u", "u1"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Session already active", result.stdout)
        mock_login.assert_not_called()

    @patch("cli.auth.commands.api_logout", return_value=True)
    def test_logout(self, mock_logout):
        session.save_token("tok-1", "u1")

        result = runner.invoke(app, ["auth", "logout"])

        self.assertEqual(result.exit_code, 0)
        mock_logout.assert_called_once_with("tok-1")
        self.assertIn("Session ended.", result.stdout)
        self.assertFalse(session.is_logged_in())

    @patch("cli.auth.commands.api_logout", return_value=False)
    def test_logout_clears_local_token_even_if_backend_fails(self, mock_logout):
        session.save_token("tok-1", "u1")

        result = runner.invoke(app, ["auth", "logout"])

        self.assertEqual(result.exit_code, 0)
        self.assertIn("Warning", result.stdout)
        self.assertFalse(session.is_logged_in())

    @patch("cli.auth.commands.api_get_status")
    def test_status(self, mock_status):
        session.save_token("tok-1", "u1")
        mock_status.return_value = {
            "user": {"name": "Li", "schoolid": "24182104"},
            "authenticated_at": "2024-09-01T08:00:00Z",
            "last_activity": "2024-09-01T08:05:00Z",
        }

        result = runner.invoke(app, ["auth", "status"])

        self.assertEqual(result.exit_code, 0)
        self.assertIn("24182104", result.stdout)
        self.assertIn("2024-09-01T08:05:00Z", result.stdout)

    def test_status_without_session(self):
        result = runner.invoke(app, ["auth", "status"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Please login first", result.stdout)


class TestUserCommands(CliTestCase):

    @patch("cli.user.commands.api_get_user_info")
    def test_info(self, mock_info):
        session.save_token("tok-1", "u1")
        mock_info.return_value = {"username": "u1", "name": "Li", "schoolid": "24182104", "email": None}

        result = runner.invoke(app, ["user", "info"])

        self.assertEqual(result.exit_code, 0)
        mock_info.assert_called_once_with("tok-1")
        self.assertIn("Li", result.stdout)
        self.assertIn("Email:     -", result.stdout)

    @patch("cli.user.commands.api_get_user_info", return_value=None)
    def test_info_backend_failure(self, mock_info):
        session.save_token("tok-1", "u1")

        result = runner.invoke(app, ["user", "info"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Failed to get user information.", result.stdout)


class TestSessionFile(CliTestCase):

    def test_corrupt_file_counts_as_logged_out(self):
        session.save_token("tok-1")
        config.SESSION_FILE.write_text("{not json", encoding="utf-8")
        self.assertIsNone(session.load_token())
        self.assertFalse(session.is_logged_in())


if __name__ == "__main__":
    unittest.main()
