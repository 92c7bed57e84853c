import unittest
from retrochat.config import Settings


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        s = Settings.from_env({})
        self.assertEqual(s.poll_interval, 2.0)
        self.assertEqual(s.max_message_length, 500)
        self.assertEqual(s.target, "127.0.0.1:50051")

    def test_environment_and_overrides(self):
        env = {"RETROCHAT_POLL_INTERVAL": "0.5", "RETROCHAT_PORT": "6000", "RETROCHAT_HOST": "chat.local"}
        s = Settings.from_env(env, port=7000, host=None)
        self.assertEqual(s.poll_interval, 0.5)
        self.assertEqual(s.port, 7000)
        self.assertEqual(s.host, "chat.local")

    def test_bad_number(self):
        with self.assertRaises(ValueError):
            Settings.from_env({"RETROCHAT_PORT": "abc"})


if __name__ == '__main__':
    unittest.main()
