import unittest
from urllib.parse import parse_qs, urlsplit

from pricelens.agents import AGENTS, DEFAULT_FEE_MULTIPLIER, fee_multiplier, get_agent

WEIDIAN_URL = "https://shop1.v.weidian.com/item.html?itemID=7234120843"
TAOBAO_URL = "https://item.taobao.com/item.htm?id=12345"


class TestAgentRegistry(unittest.TestCase):
    def test_known_fees(self):
        self.assertEqual(fee_multiplier("superbuy"), 1.0238)
        self.assertEqual(fee_multiplier("cssbuy"), 1.02)

    def test_unknown_agent_gets_default_fee(self):
        self.assertEqual(fee_multiplier("unknown-agent"), DEFAULT_FEE_MULTIPLIER)
        self.assertEqual(fee_multiplier(None), DEFAULT_FEE_MULTIPLIER)
        self.assertEqual(get_agent("unknown-agent").id, "unknown-agent")

    def test_lookup_is_case_insensitive(self):
        self.assertIs(get_agent("CSSBUY"), AGENTS["cssbuy"])


class TestLinkBuilders(unittest.TestCase):
    def test_query_append_encodes_product_url(self):
        link = get_agent("superbuy").product_link("weidian", WEIDIAN_URL)
        self.assertTrue(link.startswith("https://www.superbuy.com/en/page/buy/?url="))
        self.assertEqual(parse_qs(urlsplit(link).query)["url"], [WEIDIAN_URL])

    def test_unknown_agent_uses_generic_rule(self):
        link = get_agent("someone-new").product_link("taobao", TAOBAO_URL)
        self.assertIn("url=", link)

    def test_cssbuy_explicit_paths(self):
        agent = get_agent("cssbuy")
        self.assertEqual(agent.product_link("weidian", WEIDIAN_URL), "https://www.cssbuy.com/item-micro-7234120843.html")
        self.assertEqual(agent.product_link("taobao", TAOBAO_URL), "https://www.cssbuy.com/item-12345.html")

    def test_cnfans_uses_shop_type_and_id(self):
        link = get_agent("cnfans").product_link("taobao", TAOBAO_URL)
        query = parse_qs(urlsplit(link).query)
        self.assertEqual(query, {"shop_type": ["taobao"], "id": ["12345"]})

    def test_sugargoo_hash_route(self):
        link = get_agent("sugargoo").product_link("weidian", WEIDIAN_URL)
        self.assertIn("#/home/productDetail?productLink=https%3A%2F%2F", link)

    def test_no_product_url_means_no_link(self):
        self.assertIsNone(get_agent("superbuy").product_link("taobao", None))
        self.assertIsNone(get_agent("cssbuy").product_link("taobao", "https://item.taobao.com/item.htm"))


if __name__ == "__main__":
    unittest.main()
