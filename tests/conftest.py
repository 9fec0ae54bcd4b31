import os
import sys
import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path for `import visiotech_sync`
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from visiotech_sync.main import app
from visiotech_sync.api import deps
from visiotech_sync.services.sync_service import SyncService


SUPPLIER_HEADER = (
    "name;short_description;description;specifications;brand;category;category_parent;"
    "precio_neto_compra;precio_venta_cliente_final;PVP;msrp;stock;ean;image_path;extra_images_paths;weight"
)

SUPPLIER_LINES = [
    'HUB2-W;Hub 2 alarma inalámbrica blanco;Central de alarma con batería;"Frecuencia: 868 MHz\nAlcance: 2000 m";'
    'AJAX;Centrales;Alarmas;80,00;120,00;100,00;150,00;high;8.43E+12;https://img.example/hub.jpg;'
    '["https://img.example/hub-2.jpg","https://img.example/thumb/hub.jpg"];0,35',
    'RLC-510A;Cámara IP 5MP;Cámara con visión nocturna;;REOLINK;Cámaras IP;Videovigilancia;30;;45,50;;medium;'
    '6975253981234;;;0.5',
    'X-OUT;Sirena exterior;;;AJAX;Outlet;Alarmas;10;;20;;low;;;;',
    'HK-1;Cámara domo;;;HIKVISION;Cámaras;Videovigilancia;10;;20;;high;;;;',
    'YALE-NP;Cerradura;;;YALE;Cerraduras;;;;;;none;;;;',
]


def supplier_text(lines=None) -> str:
    return "\n".join([SUPPLIER_HEADER] + list(SUPPLIER_LINES if lines is None else lines)) + "\n"


@pytest.fixture()
def supplier_csv(tmp_path):
    path = tmp_path / "visiotech.csv"
    path.write_text(supplier_text(), encoding="utf-8")
    return path


class _FakeShopify:
    def __init__(self):
        self.synced = []

    def ensure_configured(self) -> None:
        return None

    async def test_connection(self) -> bool:
        return True

    async def sync_products(self, products, api_mode="graphql", index=None):
        self.synced.append((api_mode, list(products)))
        results = []
        for i, p in enumerate(products):
            status = "created" if i == 0 else "updated"
            results.append({"status": status, "sku": p.sku, "handle": p.handle})
        return results


@pytest.fixture()
def fake_shopify():
    return _FakeShopify()


@pytest.fixture(autouse=True)
def _override_dependencies(fake_shopify):
    app.dependency_overrides[deps.get_shopify_service] = lambda: fake_shopify
    app.dependency_overrides[deps.get_sync_service] = lambda: SyncService(shopify=fake_shopify)
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def client():
    return TestClient(app)
