"""
Tests for the tenant scoping lint script (scripts/check_tenant_scoping.py).
"""

from pathlib import Path

from scripts.check_tenant_scoping import (
    SCAN_ROOT,
    count_blocking,
    main,
    scan_directory,
    scan_text,
    should_exclude,
)

SAMPLE = Path("sample.py")


def severities(content: str) -> list[str]:
    return [f.severity for f in scan_text(SAMPLE, content)]


class TestScanText:
    def test_hardcoded_tenant_constant(self):
        assert severities("DEFAULT_TENANT_ID = 1\n") == ["CRITICAL"]

    def test_hardcoded_tenant_literal(self):
        assert severities("order = Order(tenant_id=3, total=5)\n") == ["WARNING"]

    def test_unscoped_product_query(self):
        content = "result = await session.execute(select(Product).where(Product.sku == sku))\n"
        assert severities(content) == ["HIGH"]

    def test_unscoped_category_query_is_medium(self):
        assert severities("stmt = select(Category)\n") == ["MEDIUM"]

    def test_filter_on_following_lines(self):
        content = (
            "result = await session.execute(\n"
            "    select(Order)\n"
            "    .where(\n"
            "        Order.tenant_id == tenant_id,\n"
            "        Order.id == order_id,\n"
            "    )\n"
            ")\n"
        )
        assert severities(content) == []

    def test_scoped_helpers(self):
        content = "stmt = scoped_select(Coupon, tenant_id)\nproduct = await require_owned(session, Product, 1, tenant_id)\n"
        assert severities(content) == []

    def test_filter_too_far_away(self):
        content = "stmt = select(Customer)\n" + "\n" * 8 + "stmt = stmt.where(Customer.tenant_id == tenant_id)\n"
        assert severities(content) == ["HIGH"]

    def test_ignored_lines(self):
        content = (
            "# select(Product) in a comment\n"
            "create(tenant_id=tenant_id)\n"
            "create(tenant_id=tenant.id)\n"
            "stmt = select(Order)  # noqa: tenant-scoping\n"
        )
        assert severities(content) == []

    def test_finding_location(self):
        [finding] = scan_text(SAMPLE, "x = 1\nstmt = select(Product)\n")
        assert finding.line_num == 2
        assert "sample.py:2" in str(finding)


class TestScanDirectory:
    def test_exclusions(self):
        assert should_exclude(Path("app/tenancy/queries.py"))
        assert should_exclude(Path("tests/test_orders.py"))
        assert not should_exclude(Path("app/services/orders.py"))

    def test_app_has_no_blocking_findings(self):
        assert count_blocking(scan_directory(SCAN_ROOT)) == 0

    def test_strict_mode(self, tmp_path, capsys):
        (tmp_path / "leaky.py").write_text("rows = select(Coupon)\n")
        assert main(["--path", str(tmp_path)]) == 0
        assert main(["--path", str(tmp_path), "--strict"]) == 1
        assert "HIGH: 1" in capsys.readouterr().out

    def test_missing_path(self, tmp_path):
        assert main(["--path", str(tmp_path / "nope")]) == 1
