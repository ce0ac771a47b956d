import asyncio
import unittest

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from dom_fakes import FakeElement, FakePage
from storyscout.errors import SelectorExhaustedError
from storyscout.extraction.selectors import (
    SELECTORS,
    as_list,
    click_first,
    fill_first,
    find_first,
    query_all,
    wait_for_first,
)


class TestFindOperations(unittest.IsolatedAsyncioTestCase):
    async def test_find_first_returns_first_match_in_order(self):
        wanted = FakeElement(text="b")
        root = FakeElement(
            children={".b": [wanted], ".c": [FakeElement(text="c")]},
            errors={".broken": RuntimeError("bad selector")},
        )
        match = await find_first(root, [".a", ".broken", ".b", ".c"])
        self.assertTrue(match.found)
        self.assertEqual(match.selector, ".b")
        self.assertIs(match.handle, wanted)
        self.assertEqual([sel for sel, _ in match.errors], [".broken"])

    async def test_find_first_exhausted_is_empty_not_error(self):
        match = await find_first(FakeElement(), [".a", ".b"])
        self.assertFalse(match.found)
        self.assertIsNone(match.selector)

    async def test_query_all_uses_first_non_empty_candidate(self):
        root = FakeElement(children={".x": [], ".y": [FakeElement(), FakeElement()]})
        matches = await query_all(root, (".x", ".y"))
        self.assertEqual(matches.selector, ".y")
        self.assertEqual(len(matches.handles), 2)

    def test_single_selector_is_a_list_of_one(self):
        self.assertEqual(as_list("div"), ["div"])
        self.assertEqual(as_list(SELECTORS["post_container"])[0], 'div[role="article"]')


class TestWaitAndActOperations(unittest.IsolatedAsyncioTestCase):
    async def test_wait_falls_through_on_timeout(self):
        handle = FakeElement()
        page = FakePage(wait_results={
            ".a": PlaywrightTimeoutError("Timeout 100ms exceeded"),
            ".b": handle,
        })
        match = await wait_for_first(page, [".a", ".b"], timeout_ms=100)
        self.assertEqual(match.selector, ".b")
        self.assertIs(match.handle, handle)
        self.assertEqual(len(match.errors), 1)

    async def test_wait_propagates_non_timeout_errors(self):
        page = FakePage(wait_results={".a": RuntimeError("page crashed"), ".b": FakeElement()})
        with self.assertRaises(RuntimeError):
            await wait_for_first(page, [".a", ".b"])
        self.assertEqual(page.calls, [("wait", ".a")])

    async def test_wait_exhausted_raises_with_every_error(self):
        page = FakePage(wait_results={
            ".a": PlaywrightTimeoutError("Timeout"),
            ".b": asyncio.TimeoutError(),
        })
        with self.assertRaises(SelectorExhaustedError) as ctx:
            await wait_for_first(page, [".a", ".b"])
        self.assertEqual([sel for sel, _ in ctx.exception.errors], [".a", ".b"])
        self.assertIn("Unable to find selectors", str(ctx.exception))

    async def test_click_falls_through_any_error(self):
        page = FakePage(click_errors={".a": RuntimeError("detached")})
        self.assertEqual(await click_first(page, [".a", ".b"]), ".b")

    async def test_click_exhausted(self):
        page = FakePage(click_errors={".a": RuntimeError("x"), ".b": ValueError("y")})
        with self.assertRaises(SelectorExhaustedError) as ctx:
            await click_first(page, [".a", ".b"])
        self.assertEqual(ctx.exception.action, "click")
        self.assertEqual(len(ctx.exception.errors), 2)

    async def test_fill_first(self):
        page = FakePage(fill_errors={"textarea": RuntimeError("hidden")})
        used = await fill_first(page, ["textarea", '[role="textbox"]'], "hello")
        self.assertEqual(used, '[role="textbox"]')
        self.assertEqual(page.filled, {'[role="textbox"]': "hello"})


if __name__ == "__main__":
    unittest.main()
