import unittest

from storyscout.ingestion.text_cleaning import clean_post_text, is_chrome_line


SAMPLES = [
    "John Doe\n5d\nReal content here.\nLike\nComment\n5 comments",
    "  Leading spaces kept inside\n\n\n\nSecond paragraph line\nShare",
    "ראה עוד\nזיכרונות מהשכונה בשנות החמישים\nאהבתי\nתגובה",
    "Yesterday at 10:32 PM\nMy grandfather built this house in 1952.\n1.2K likes\nWrite a comment…",
    "",
    "Like\nComment\nShare",
]


class TestCleanPostText(unittest.TestCase):
    def test_chrome_lines_are_removed(self):
        out = clean_post_text("John Doe\n5d\nReal content here.\nLike\nComment\n5 comments")
        lines = out.split("\n")
        self.assertIn("Real content here.", lines)
        for chrome in ("5d", "Like", "Comment", "5 comments"):
            self.assertNotIn(chrome, lines)

    def test_idempotent(self):
        for sample in SAMPLES:
            with self.subTest(sample=sample):
                once = clean_post_text(sample)
                self.assertEqual(clean_post_text(once), once)

    def test_multilingual_and_relative_time_chrome(self):
        out = clean_post_text(SAMPLES[3])
        self.assertEqual(out, "My grandfather built this house in 1952.")
        out = clean_post_text(SAMPLES[2])
        self.assertEqual(out, "זיכרונות מהשכונה בשנות החמישים")

    def test_only_chrome_yields_empty(self):
        self.assertEqual(clean_post_text("Like\nComment\nShare\n2 hours ago\nJust now"), "")

    def test_none_and_empty(self):
        self.assertEqual(clean_post_text(None), "")
        self.assertEqual(clean_post_text(""), "")

    def test_chrome_match_is_whole_line_only(self):
        self.assertTrue(is_chrome_line("  See more  "))
        self.assertTrue(is_chrome_line("Public group"))
        self.assertTrue(is_chrome_line("ok"))
        self.assertFalse(is_chrome_line("I like this comment a lot"))
        self.assertFalse(is_chrome_line("Share your memories of the old market"))


if __name__ == "__main__":
    unittest.main()
