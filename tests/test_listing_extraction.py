"""Tests for HTML listing extraction and site dispatch."""

from __future__ import annotations

from haggle_mcp.extraction import extract_listing, fallback_listing
from haggle_mcp.extraction.listing import (
    _extract_directory_dealer,
    _extract_generic,
    _extract_marketplace,
    collect_prices,
    dealer_name_from_hostname,
    select_extractor,
)

DIRECTORY_URL = (
    "https://www.toyotaofcedarpark.com/inventory/"
    "used-2022-toyota-tundra-4wd-sr5-crew-cab-5tfhy5f1xkx839771/"
)

GENERIC_URL = "https://www.round-rock-honda.com/used/accord"
GENERIC_HTML = """
<html>
<head><title>2021 Honda Accord Sport | Round Rock Honda</title></head>
<body>
  <h1>2021 Honda Accord Sport</h1>
  <p>VIN: 1HGCV1F34MA012345</p>
  <p>Mileage: 28,400 miles</p>
  <span class="price">$24,995</span>
  <p>Doc fee $150</p>
  <p>Call 512-555-0147 or email internet@roundrockhonda.com</p>
</body>
</html>
"""

CARGURUS_URL = "https://www.cargurus.com/Cars/inventorylisting/vdp.action?listingId=123"
CARGURUS_HTML = """
<html>
<head>
<script type="application/ld+json">
{"@type": "Car", "name": "2020 Ford F-150 XLT", "offers": {"price": "34995", "priceCurrency": "USD"}}
</script>
</head>
<body><h1>2020 Ford F-150 XLT</h1><span>$36,500</span></body>
</html>
"""


class TestDispatch:
    def test_directory_host(self):
        assert select_extractor(DIRECTORY_URL) is _extract_directory_dealer

    def test_marketplace_host(self):
        assert select_extractor(CARGURUS_URL) is _extract_marketplace
        assert select_extractor("https://www.cars.com/vehicledetail/abc/") is _extract_marketplace

    def test_everything_else_generic(self):
        assert select_extractor(GENERIC_URL) is _extract_generic


class TestDirectoryDealer:
    def test_inventory_path_decomposed(self):
        result = extract_listing(DIRECTORY_URL, "<html></html>")
        vehicle = result.vehicle
        assert vehicle.year == 2022
        assert vehicle.make == "Toyota"
        assert vehicle.model == "Tundra"
        assert vehicle.trim == "SR5"
        assert vehicle.vin == "5TFHY5F1XKX839771"
        assert vehicle.listing_url == DIRECTORY_URL

    def test_canonical_dealer_record(self):
        result = extract_listing(DIRECTORY_URL, "<html></html>")
        assert result.dealer.name == "Toyota of Cedar Park"
        assert result.dealer.contact_email == "sales@toyotaofcedarpark.com"

    def test_page_price_scanned(self):
        result = extract_listing(DIRECTORY_URL, '<div class="final-price">$48,750</div>')
        assert result.pricing.asking_price == 48750


class TestGenericExtractor:
    def test_vehicle_from_heading(self):
        result = extract_listing(GENERIC_URL, GENERIC_HTML)
        assert result.vehicle.year == 2021
        assert result.vehicle.make == "Honda"
        assert result.vehicle.model == "Accord"

    def test_labeled_vin_and_mileage(self):
        result = extract_listing(GENERIC_URL, GENERIC_HTML)
        assert result.vehicle.vin == "1HGCV1F34MA012345"
        assert result.vehicle.mileage == 28400

    def test_price_ignores_fees(self):
        result = extract_listing(GENERIC_URL, GENERIC_HTML)
        assert result.pricing.asking_price == 24995

    def test_dealer_from_hostname(self):
        result = extract_listing(GENERIC_URL, GENERIC_HTML)
        assert result.dealer.name == "Round Rock Honda"
        assert result.dealer.website == GENERIC_URL
        assert result.dealer.phone == "512-555-0147"
        assert result.dealer.contact_email == "internet@roundrockhonda.com"

    def test_site_name_preferred_over_hostname(self):
        html = '<meta property="og:site_name" content="Hill Country Motors"><h1>2019 Mazda CX-5</h1>'
        result = extract_listing("https://hcm.example.com/cx5", html)
        assert result.dealer.name == "Hill Country Motors"

    def test_unknown_make_from_title_shape(self):
        html = "<title>2018 Saab 9-3 Aero</title>"
        result = extract_listing("https://example.com/saab", html)
        assert (result.vehicle.year, result.vehicle.make, result.vehicle.model) == (2018, "Saab", "9-3")

    def test_garbage_html_never_raises(self):
        result = extract_listing("https://example.com/x", "<<<not really html")
        assert result.vehicle.listing_url == "https://example.com/x"
        assert result.pricing.asking_price is None


class TestPriceCascade:
    def test_highest_candidate_wins(self):
        html = '<span data-price="31000"></span><p>MSRP: $33,250</p><p>$29,900</p>'
        assert max(collect_prices(html)) == 33250
        assert extract_listing("https://example.com/a", html).pricing.asking_price == 33250

    def test_meta_and_microdata(self):
        html = (
            '<meta property="product:price:amount" content="27450">'
            '<span itemprop="price" content="27450"></span>'
        )
        assert extract_listing("https://example.com/b", html).pricing.asking_price == 27450

    def test_json_like_price(self):
        html = '<script>var car = {"price":"22100"};</script>'
        assert extract_listing("https://example.com/c", html).pricing.asking_price == 22100

    def test_above_ceiling_excluded(self):
        html = "<p>$500,001</p><p>$32,000</p>"
        assert extract_listing("https://example.com/d", html).pricing.asking_price == 32000

    def test_below_floor_excluded(self):
        assert extract_listing("https://example.com/e", "<p>$999</p>").pricing.asking_price is None


class TestMarketplace:
    def test_json_ld_vehicle_and_offer(self):
        result = extract_listing(CARGURUS_URL, CARGURUS_HTML)
        assert result.vehicle.year == 2020
        assert result.vehicle.make == "Ford"
        assert result.vehicle.model == "F-150"
        assert result.pricing.asking_price == 34995

    def test_without_json_ld_uses_cascade(self):
        html = "<h1>2019 Honda Pilot EX-L</h1><span>$29,500</span>"
        result = extract_listing("https://www.autotrader.com/cars-for-sale/vehicle/1", html)
        assert result.vehicle.model == "Pilot"
        assert result.pricing.asking_price == 29500

    def test_out_of_range_offer_falls_back_to_cascade(self):
        html = CARGURUS_HTML.replace('"price": "34995"', '"price": "999"')
        result = extract_listing(CARGURUS_URL, html)
        assert result.pricing.asking_price == 36500

    def test_dealer_website_and_name_set(self):
        result = extract_listing(CARGURUS_URL, CARGURUS_HTML)
        assert result.dealer.website == CARGURUS_URL
        assert result.dealer.name == "Cargurus"

    def test_json_ld_seller_names_dealer(self):
        html = CARGURUS_HTML.replace(
            '"priceCurrency": "USD"',
            '"priceCurrency": "USD", "seller": {"name": "Lone Star Ford"}',
        )
        result = extract_listing(CARGURUS_URL, html)
        assert result.dealer.name == "Lone Star Ford"
        assert result.dealer.website == CARGURUS_URL


class TestFallback:
    def test_hostname_only(self):
        result = fallback_listing("https://www.example-motors.com/car/1")
        assert result.dealer.name == "www.example-motors.com"
        assert result.vehicle.listing_url == "https://www.example-motors.com/car/1"
        assert result.vehicle.make == ""
        assert result.pricing.asking_price is None

    def test_hostname_title_case(self):
        assert dealer_name_from_hostname("www.round-rock-honda.com") == "Round Rock Honda"
