"""
Priority keywords for the front office knowledge base, with weight multipliers.

Higher weight = more importance in retrieval ranking. Categories are flattened
once at import into KEYWORD_WEIGHTS; when a keyword appears in several
categories the highest weight wins.
"""
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class KeywordCategory:
    """A named group of domain keywords sharing one weight."""
    name: str
    weight: float
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class WeightedKeyword:
    keyword: str
    weight: float


KEYWORD_CATEGORIES: tuple[KeywordCategory, ...] = (
    KeywordCategory(
        name="offers",
        weight=2.0,
        keywords=(
            "offre", "offres", "offer", "offers",
            "promotion", "promotions", "promo", "promos",
            "réduction", "reduction", "remise", "discount",
            "gratuité", "gratuit", "free", "bonus",
            "solde", "deal", "deals", "pack", "packs",
            "tarif", "tarifs", "price", "prix",
        ),
    ),
    KeywordCategory(
        name="gaming",
        weight=2.5,
        keywords=(
            "gaming", "gamer", "game", "games", "jeux", "jeu",
            "pubg", "free fire", "freefire", "mobile legends",
            "fortnite", "cod", "call of duty", "fifa",
            "esport", "esports", "stream", "streaming",
            "ping", "latency", "lag", "fps",
            "pack gamer", "gamer pack", "gaming pack",
        ),
    ),
    KeywordCategory(
        name="contracts",
        weight=2.0,
        keywords=(
            "contrat", "contrats", "contract", "contracts",
            "abonnement", "abonnements", "subscription",
            "forfait", "forfaits", "plan", "plans",
            "engagement", "engagements", "commitment",
            "résiliation", "resiliation", "cancel", "cancellation",
            "renouvellement", "renewal", "renew",
            "conditions", "terms", "modalités",
        ),
    ),
    KeywordCategory(
        name="internet",
        weight=1.8,
        keywords=(
            "internet", "fibre", "fiber", "ftth", "fttp",
            "adsl", "vdsl", "connexion", "connection",
            "débit", "debit", "speed", "vitesse",
            "data", "données", "go", "mo", "gb", "mb",
            "wifi", "wi-fi", "routeur", "router", "modem",
            "box", "idoom", "4g", "5g", "lte",
        ),
    ),
    KeywordCategory(
        name="mobile",
        weight=1.8,
        keywords=(
            "mobile", "mobiles", "téléphone", "telephone", "phone",
            "sim", "carte sim", "sim card", "esim",
            "recharge", "recharges", "topup", "top-up",
            "crédit", "credit", "solde", "balance",
            "appel", "appels", "call", "calls",
            "sms", "message", "messages", "texto",
            "mobilis", "djezzy", "ooredoo",
        ),
    ),
    KeywordCategory(
        name="services",
        weight=1.5,
        keywords=(
            "service", "services", "assistance", "support",
            "hotline", "helpdesk", "help desk", "aide",
            "réclamation", "reclamation", "complaint", "plainte",
            "demande", "request", "ticket", "tickets",
            "agence", "agency", "boutique", "store",
            "contact", "contacter", "joindre",
        ),
    ),
    KeywordCategory(
        name="billing",
        weight=1.8,
        keywords=(
            "facture", "factures", "bill", "bills", "invoice",
            "paiement", "payment", "payer", "pay",
            "solde", "balance", "montant", "amount",
            "consommation", "consumption", "usage",
            "facturation", "billing", "prélèvement",
            "dette", "debt", "impayé", "unpaid",
            "ccp", "edahabia", "baridi mob",
        ),
    ),
    KeywordCategory(
        name="enterprise",
        weight=1.7,
        keywords=(
            "entreprise", "entreprises", "enterprise", "business",
            "professionnel", "professional", "pro",
            "b2b", "corporate", "société", "company",
            "pme", "tpe", "startup", "startups",
            "cloud", "hosting", "hébergement",
            "vpn", "ip fixe", "static ip", "dédié", "dedicated",
        ),
    ),
    KeywordCategory(
        name="technical",
        weight=1.6,
        keywords=(
            "panne", "outage", "coupure", "interruption",
            "problème", "problem", "issue", "bug",
            "configuration", "configurer", "configure", "setup",
            "installation", "installer", "install",
            "diagnostic", "test", "vérification", "check",
            "dépannage", "troubleshoot", "résoudre", "fix",
        ),
    ),
    KeywordCategory(
        name="activation",
        weight=1.8,
        keywords=(
            "activation", "activer", "activate", "active",
            "désactivation", "désactiver", "deactivate",
            "souscrire", "subscribe", "souscription",
            "inscription", "register", "registration",
            "commander", "order", "commande",
        ),
    ),
)

# Characters kept in a token: ASCII word characters and Latin accented letters
NON_TOKEN_CHARS = re.compile(r"[^A-Za-z0-9_\u00C0-\u024F]")


def _build_keyword_weights(categories: tuple[KeywordCategory, ...]) -> dict[str, float]:
    weights: dict[str, float] = {}
    for category in categories:
        for keyword in category.keywords:
            normalized = keyword.lower()
            if category.weight > weights.get(normalized, 0.0):
                weights[normalized] = category.weight
    return weights


KEYWORD_WEIGHTS: dict[str, float] = _build_keyword_weights(KEYWORD_CATEGORIES)


def clean_token(word: str) -> str:
    """Strip punctuation and symbols from a whitespace-delimited token."""
    return NON_TOKEN_CHARS.sub("", word)


def get_keyword_weight(keyword: str) -> float:
    """Get the weight for a keyword (1.0 for unknown keywords)."""
    return KEYWORD_WEIGHTS.get(keyword.lower(), 1.0)


def extract_keywords_with_weights(text: str) -> list[WeightedKeyword]:
    """
    Extract priority keywords (weight > 1.0) from text.

    Single tokens are looked up in the flattened table; multi-word keywords
    are detected as substrings of the lowercased text and carry their
    category weight.
    """
    result: list[WeightedKeyword] = []
    seen: set[str] = set()

    for word in text.lower().split():
        token = clean_token(word)
        if len(token) < 2 or token in seen:
            continue
        seen.add(token)
        weight = get_keyword_weight(token)
        if weight > 1.0:
            result.append(WeightedKeyword(keyword=token, weight=weight))

    text_lower = text.lower()
    for category in KEYWORD_CATEGORIES:
        for keyword in category.keywords:
            if " " in keyword and keyword in text_lower and keyword not in seen:
                seen.add(keyword)
                result.append(WeightedKeyword(keyword=keyword, weight=category.weight))

    return result
