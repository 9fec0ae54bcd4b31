"""Pure field transforms applied to supplier rows.

Every function here is stateless: strings in, strings (or numbers) out. The
lookup tables are fixed and belong to the Visiotech catalogue as sold in the
Portuguese store.
"""
import json
import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)


# UTF-8 text that was decoded as cp1252/latin-1 somewhere upstream.
# Longer sequences first so that "â‚¬" is not eaten by a shorter key.
ENCODING_FIXES = [
    ("â‚¬", "€"), ("â€“", "–"), ("â€”", "—"), ("â€™", "’"), ("â€˜", "‘"),
    ("â€œ", "“"), ("â€\x9d", "”"), ("â€¢", "•"), ("â„¢", "™"),
    ("Ã¡", "á"), ("Ã©", "é"), ("Ã\xad", "í"), ("Ã³", "ó"), ("Ãº", "ú"),
    ("Ã±", "ñ"), ("Ã§", "ç"), ("Ã£", "ã"), ("Ãµ", "õ"), ("Ã¢", "â"),
    ("Ãª", "ê"), ("Ã´", "ô"), ("Ã¼", "ü"), ("Ã\xa0", "à"),
    ("Ã‰", "É"), ("Ã“", "Ó"), ("Ãš", "Ú"), ("Ã‘", "Ñ"), ("Ã‡", "Ç"),
    ("Ãƒ", "Ã"), ("Ã•", "Õ"), ("Ã€", "À"),
    ("Âº", "º"), ("Âª", "ª"), ("Â°", "°"), ("Â´", "´"), ("Â®", "®"),
    ("Â©", "©"), ("Â\xa0", " "),
]

# Spanish -> European Portuguese, matched on word boundaries.
TRANSLATIONS = {
    "visión nocturna": "visão noturna",
    "detector de movimiento": "detetor de movimento",
    "detector de humo": "detetor de fumo",
    "fuente de alimentación": "fonte de alimentação",
    "sin cables": "sem fios",
    "inalámbrico": "sem fios",
    "inalámbrica": "sem fios",
    "cámara": "câmara",
    "cámaras": "câmaras",
    "sirena": "sirene",
    "sirenas": "sirenes",
    "alarma": "alarme",
    "alarmas": "alarmes",
    "detector": "detetor",
    "detectores": "detetores",
    "movimiento": "movimento",
    "puerta": "porta",
    "puertas": "portas",
    "ventana": "janela",
    "ventanas": "janelas",
    "humo": "fumo",
    "batería": "bateria",
    "baterías": "baterias",
    "cerradura": "fechadura",
    "cerraduras": "fechaduras",
    "mando": "comando",
    "llavero": "porta-chaves",
    "blanco": "branco",
    "blanca": "branca",
    "negro": "preto",
    "negra": "preta",
    "color": "cor",
    "soporte": "suporte",
    "grabador": "gravador",
    "videoportero": "videoporteiro",
    "timbre": "campainha",
    "enchufe": "tomada",
    "incluye": "inclui",
    "compatible": "compatível",
    "protección": "proteção",
    "seguridad": "segurança",
    "hogar": "casa",
    "inundación": "inundação",
    "cristal": "vidro",
    "rotura": "quebra",
    "apertura": "abertura",
    "panel": "painel",
    "señal": "sinal",
    "resolución": "resolução",
    "almacenamiento": "armazenamento",
    "nube": "nuvem",
    "tarjeta": "cartão",
    "micrófono": "microfone",
    "altavoz": "altifalante",
    "con": "com",
    "sin": "sem",
    "y": "e",
}

_TRANSLATION_RE = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in sorted(TRANSLATIONS, key=len, reverse=True)) + r")\b",
    flags=re.IGNORECASE,
)

# Ordered: the first bucket whose keyword appears in the category wins.
CATEGORY_MAPPING = [
    (("videoportero", "videoporteiro", "intercom", "timbre", "campainha", "doorbell"), "Videoporteiros e Campainhas"),
    (("cerradura", "fechadura", "lock"), "Fechaduras Inteligentes"),
    (("kit",), "Kits de Alarme"),
    (("sirena", "sirene", "siren"), "Sirenes"),
    (("detector", "detetor", "sensor"), "Sensores e Detetores"),
    (("camara", "camera", "cctv"), "Câmaras de Vigilância"),
    (("grabador", "gravador", "nvr", "dvr"), "Gravadores"),
    (("alarma", "alarme", "alarm", "hub", "panel", "painel"), "Centrais de Alarme"),
    (("domotica", "smart home", "enchufe", "tomada", "interruptor", "rele"), "Casa Inteligente"),
    (("teclado", "keypad", "mando", "comando", "llavero"), "Comandos e Teclados"),
    (("accesorio", "acessorio", "soporte", "suporte", "bateria", "cable", "fuente", "fonte"), "Acessórios"),
]
DEFAULT_CATEGORY = "Outros"

EXCLUDED_CATEGORIES = (
    "outlet",
    "repuesto", "recambio", "pecas de reposicao",
    "almacenamiento en la nube", "armazenamento em nuvem",
)

AJAX_FAMILY = {"AJAX", "AJAXCCTV", "AJAXVIVIENDAVACIA"}

STOCK_LEVELS = {"high": 10, "medium": 5, "low": 2, "none": 0}
STOCK_ALIASES = {
    "alto": "high", "medio": "medium", "bajo": "low",
    "sin stock": "none", "agotado": "none", "out of stock": "none",
}

THUMBNAIL_MARKERS = ("thumb", "_small", "/small/", "/mini/")

SPECS_HEADING = "<strong>Especificações Técnicas:</strong>"

CENT = Decimal("0.01")


def _fold(text: str) -> str:
    """Upper-case, accent-free, alphanumerics only. Used for brand comparison."""
    t = unicodedata.normalize('NFKD', text or '')
    t = ''.join(c for c in t if not unicodedata.combining(c))
    return re.sub(r"[^A-Z0-9]", "", t.upper())


def _plain(text: str) -> str:
    """Lower-case, accent-free. Used for substring matching."""
    t = unicodedata.normalize('NFKD', text or '')
    t = ''.join(c for c in t if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", t.lower()).strip()


def fix_encoding(text: Optional[str]) -> str:
    if not text:
        return ''
    fixed = str(text)
    for broken, good in ENCODING_FIXES:
        if broken in fixed:
            fixed = fixed.replace(broken, good)
    return fixed


def normalize_brand(brand: Optional[str]) -> str:
    """Canonical vendor name. The Ajax sub-brands all fold into ``Ajax``."""
    raw = re.sub(r"\s+", " ", brand or '').strip()
    if not raw:
        return ''
    if _fold(raw) in AJAX_FAMILY:
        return "Ajax"
    if raw.isupper():
        return raw.title()
    return raw


def approve_brand(brand: Optional[str], allowed: Iterable[str]) -> Optional[str]:
    """Return the normalized brand when it is on the allow-list, else None."""
    folded = _fold(brand or '')
    if not folded:
        return None
    if folded not in {_fold(b) for b in allowed}:
        return None
    return normalize_brand(brand)


def is_excluded_category(*categories: Optional[str]) -> bool:
    for category in categories:
        plain = _plain(category or '')
        if plain and any(marker in plain for marker in EXCLUDED_CATEGORIES):
            return True
    return False


def categorize(category: Optional[str], category_parent: Optional[str] = None) -> str:
    """Bucket a supplier category into a store product type."""
    for text in (category, category_parent):
        plain = _plain(text or '')
        if not plain:
            continue
        for keywords, bucket in CATEGORY_MAPPING:
            if any(k in plain for k in keywords):
                return bucket
    return DEFAULT_CATEGORY


def _match_case(source: str, replacement: str) -> str:
    if len(source) > 1 and source.isupper():
        return replacement.upper()
    if source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def translate_text(text: Optional[str]) -> str:
    """Translate known Spanish words/phrases to Portuguese, keeping their case."""
    if not text or not isinstance(text, str):
        return ''

    def _sub(match: re.Match) -> str:
        found = match.group(0)
        return _match_case(found, TRANSLATIONS[found.lower()])

    return _TRANSLATION_RE.sub(_sub, text)


def stock_to_quantity(level: Any) -> int:
    """Map the supplier stock bucket (high/medium/low/none) to a quantity."""
    key = re.sub(r"\s+", " ", str(level or '')).strip().lower()
    if not key:
        return 0
    key = STOCK_ALIASES.get(key, key)
    if key in STOCK_LEVELS:
        return STOCK_LEVELS[key]
    if re.fullmatch(r"-?\d+", key):
        return max(0, int(key))
    return 0


def repair_ean(value: Any) -> str:
    """Return the EAN as a digit string, undoing spreadsheet scientific notation.

    ``8.43E+12`` -> ``8430000000000``; ``5901234123457.0`` -> ``5901234123457``.
    Anything that cannot be read as a positive integer gives ``""``.
    """
    s = str(value or '').strip().lstrip("'").replace(' ', '')
    if not s:
        return ''
    s = s.replace(',', '.')
    if re.fullmatch(r"\d+", s):
        return s
    if re.fullmatch(r"\d+\.0+", s):
        return s.split('.', 1)[0]
    if re.fullmatch(r"\d+(\.\d+)?[eE][+-]?\d+", s):
        try:
            number = Decimal(s)
        except InvalidOperation:
            return ''
        if number <= 0:
            return ''
        return str(int(number.to_integral_value(rounding=ROUND_HALF_UP)))
    return ''


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse supplier prices: ``1.234,56``, ``1234,56``, ``1234.56``, ``12 €``."""
    s = str(value or '').strip().replace('€', '').replace(' ', '').replace('\xa0', '')
    if not s:
        return None
    if ',' in s and '.' in s:
        if s.rfind(',') > s.rfind('.'):
            s = s.replace('.', '').replace(',', '.')
        else:
            s = s.replace(',', '')
    elif ',' in s:
        s = s.replace(',', '.')
    try:
        number = Decimal(s)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def price_with_vat(net: Decimal, vat_rate: float = 0.23) -> Decimal:
    """VAT-inclusive price rounded half-up to cents (``net × 1.23`` by default)."""
    gross = Decimal(net) * (Decimal("1") + Decimal(str(vat_rate)))
    return gross.quantize(CENT, rounding=ROUND_HALF_UP)


def format_price(amount: Optional[Decimal]) -> Optional[str]:
    if amount is None:
        return None
    return f"{Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def _is_thumbnail(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in THUMBNAIL_MARKERS)


def _flatten_image_entries(data: Any) -> List[str]:
    urls: List[str] = []
    if isinstance(data, str):
        urls.append(data)
    elif isinstance(data, list):
        for item in data:
            urls.extend(_flatten_image_entries(item))
    elif isinstance(data, dict):
        for key in ('url', 'src', 'path'):
            if isinstance(data.get(key), str):
                urls.append(data[key])
                return urls
        for key in ('details', 'images', 'extra'):
            if key in data:
                urls.extend(_flatten_image_entries(data[key]))
    return urls


def parse_extra_images(raw: Optional[str]) -> List[str]:
    """Decode the JSON-encoded extra image list, dropping thumbnails and duplicates."""
    if not raw or not str(raw).strip():
        return []
    try:
        data = json.loads(raw)
        # Some exports double-encode the array
        if isinstance(data, str) and data.strip()[:1] in ('[', '{'):
            data = json.loads(data)
    except (ValueError, TypeError):
        logger.debug(f"Unparseable extra_images_paths: {raw[:80]}")
        return []

    out: List[str] = []
    seen = set()
    for url in _flatten_image_entries(data):
        url = url.strip()
        if not url or _is_thumbnail(url) or url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def slugify(text: Optional[str]) -> str:
    t = unicodedata.normalize('NFKD', text or '')
    t = t.encode('ascii', 'ignore').decode('ascii').lower()
    return re.sub(r"[^a-z0-9]+", "-", t).strip('-')


def build_body_html(description: Optional[str], specifications: Optional[str] = None) -> str:
    body = (description or '').strip()
    specs = (specifications or '').strip()
    if not specs:
        return body
    if '<' not in specs:
        specs = specs.replace('\r\n', '\n').replace('\n', '<br>')
    if not body:
        return f"{SPECS_HEADING}<br>{specs}"
    return f"{body}<br><br>{SPECS_HEADING}<br>{specs}"


def build_tags(*values: Optional[str]) -> List[str]:
    tags: List[str] = []
    seen = set()
    for value in values:
        tag = re.sub(r"\s+", " ", value or '').strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
    return tags
