import os
import unittest
from unittest.mock import MagicMock, patch

import whatsapp
from whatsapp import WhatsAppError, _to_e164_id, wa_send_text, wa_send_text_id


class WhatsAppHelpersTestCase(unittest.TestCase):
    def setUp(self):
        self._env_backup = {
            "WA_PHONE_NUMBER_ID": os.environ.get("WA_PHONE_NUMBER_ID"),
            "WA_ACCESS_TOKEN": os.environ.get("WA_ACCESS_TOKEN"),
        }
        os.environ["WA_PHONE_NUMBER_ID"] = "123456789012345"
        os.environ["WA_ACCESS_TOKEN"] = "test-token"

    def tearDown(self):
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_to_e164_id_examples(self):
        self.assertEqual(_to_e164_id("0812345678"), "62812345678")
        self.assertEqual(_to_e164_id("+62 812-3456-7890"), "6281234567890")
        self.assertEqual(_to_e164_id("6281234567890"), "6281234567890")
        self.assertEqual(_to_e164_id("0062 812 3456 7890"), "6281234567890")
        self.assertEqual(_to_e164_id("812 3456 7890"), "6281234567890")

    def test_to_e164_id_rejects_non_mobile_numbers(self):
        for value in (None, "", "abc", "021-555-0199", "94712345678", "0812"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    _to_e164_id(value)

    @patch("whatsapp.requests.post")
    def test_wa_send_text_payload(self, mock_post):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"messages": [{"id": "wamid.sample"}]}
        mock_post.return_value = mock_response

        result = wa_send_text("6281234567890", "Hello there!")

        self.assertEqual(result, {"messages": [{"id": "wamid.sample"}]})
        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], f"{whatsapp.WA_BASE}/123456789012345/messages")
        self.assertEqual(kwargs["headers"], {
            "Authorization": "Bearer test-token",
            "Content-Type": "application/json",
        })
        self.assertEqual(kwargs["json"], {
            "messaging_product": "whatsapp",
            "to": "6281234567890",
            "type": "text",
            "text": {"body": "Hello there!"},
        })
        self.assertEqual(kwargs["timeout"], 20)

    @patch("whatsapp.requests.post")
    def test_wa_send_text_http_error(self, mock_post):
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.text = "Internal Error"
        mock_post.return_value = mock_response

        with self.assertRaises(WhatsAppError) as ctx:
            wa_send_text("6281234567890", "Hello")

        self.assertIn("500", str(ctx.exception))
        self.assertIn("Internal Error", str(ctx.exception))

    @patch("whatsapp.requests.post")
    def test_wa_send_text_id_normalises_number(self, mock_post):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"messages": []}
        mock_post.return_value = mock_response

        wa_send_text_id("0812-3456-7890", "Halo")

        self.assertEqual(mock_post.call_args[1]["json"]["to"], "6281234567890")

    def test_missing_credentials_raise(self):
        os.environ.pop("WA_ACCESS_TOKEN", None)
        with self.assertRaises(WhatsAppError) as ctx:
            wa_send_text("6281234567890", "Halo")
        self.assertIn("WA_ACCESS_TOKEN", str(ctx.exception))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
