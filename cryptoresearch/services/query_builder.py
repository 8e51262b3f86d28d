from __future__ import annotations

from cryptoresearch.models.search import SearchSource
from cryptoresearch.tools.web_utils import clean_url, sanitize_input


def basic_queries(project: str) -> list[str]:
    return [
        f"{project} crypto project overview",
        f"{project} tokenomics whitepaper",
        f"{project} team founders background",
        f"{project} roadmap development updates",
    ]


def enhanced_queries(project: str, twitter: str = "", website: str = "") -> list[str]:
    queries = [
        f"{project} DeFi TVL volume metrics analytics",
        f"{project} on-chain analytics transaction volume wallets",
        f"{project} crypto twitter KOL influencer opinion sentiment",
        f"{project} governance proposals DAO voting participation",
        f"{project} security audit report vulnerabilities",
        f"{project} competitors comparison market share",
        f"{project} airdrop farming strategy eligibility",
        f"{project} yield farming staking APY rewards protocol",
        f"{project} whale wallet concentration distribution analysis",
        f"{project} regulatory compliance legal risks SEC",
        f"{project} institutional adoption enterprise partnerships",
        f"{project} developer activity GitHub commits contributors",
    ]
    if twitter:
        queries.append(f"site:twitter.com {twitter} {project} alpha calls predictions")
    if website:
        queries.append(f"site:{website} documentation API technical specs")
    return queries


def speculation_queries(project: str) -> list[str]:
    return [
        f"{project} price prediction 2024 2025 bull bear scenarios",
        f"{project} market catalysts events upcoming releases",
        f"{project} narrative ecosystem integrations partnerships",
        f"{project} competitive advantages moats differentiation",
        f"{project} risks threats regulatory black swan events",
        f"{project} adoption metrics user growth network effects",
        f"{project} token economics game theory incentive alignment",
    ]


def defi_queries(project: str) -> list[str]:
    return [
        f"{project} Total Value Locked TVL DeFiLlama",
        f"{project} yield farming pools liquidity mining",
        f"{project} impermanent loss risks strategies",
        f"{project} governance token utility voting rights",
        f"{project} protocol revenue fee distribution",
        f"{project} liquidity depth order book analysis",
        f"{project} smart contract risks audits exploits",
    ]


def context_queries(project: str, contract: str = "") -> list[str]:
    queries = [f"{contract} etherscan audit security"] if contract else []
    queries.extend(
        [
            f'"{project}" ecosystem partnerships integrations',
            f'"{project}" narrative meta trends 2024',
            f'"{project}" institutional adoption whale activity',
            f'"{project}" developer ecosystem grants',
            f'"{project}" competitive moat unique value proposition',
        ]
    )
    return queries


def build_queries(
    project_name: str,
    website: str | None = None,
    twitter: str | None = None,
    contract: str | None = None,
    limit: int = 25,
) -> list[str]:
    """Expand a project identity into search queries, de-duplicated in order and capped."""
    project = sanitize_input(project_name)
    site = sanitize_input(clean_url(website))
    handle = sanitize_input(clean_url(twitter))
    contract_id = sanitize_input(contract)

    candidates = [
        *basic_queries(project),
        *enhanced_queries(project, handle, site),
        *speculation_queries(project),
        *defi_queries(project),
        *context_queries(project, contract_id),
    ]

    seen: set[str] = set()
    queries: list[str] = []
    for query in candidates:
        if query and query not in seen:
            seen.add(query)
            queries.append(query)
    return queries[:limit]


def score_source(source: SearchSource, project_name: str) -> int:
    """Prioritisation heuristic: official docs, substantive content, project relevance, recency."""
    url = source.url.lower()
    title = source.title.lower()
    content = source.content.lower()
    project = project_name.lower().strip()
    score = 0

    if "github.com" in url or "docs." in url or "whitepaper" in url:
        score += 10
    if "medium.com" in url or "blog." in url:
        score += 5
    if "twitter.com" in url or "discord." in url:
        score += 3

    if "tokenomics" in content or "roadmap" in content:
        score += 5
    if "audit" in content or "security" in content:
        score += 4
    if "tvl" in content or "volume" in content:
        score += 3

    if project and project in title:
        score += 8
    if project and project in content:
        score += 2

    if "2024" in content or "2025" in content:
        score += 2
    return score


def rank_sources(sources: list[SearchSource], project_name: str, limit: int = 50) -> list[SearchSource]:
    """Keep one source per URL, best-scoring first (stable on ties), capped at `limit`."""
    seen: set[str] = set()
    unique: list[SearchSource] = []
    for source in sources:
        if not source.url or source.url in seen:
            continue
        seen.add(source.url)
        unique.append(source)
    ranked = sorted(unique, key=lambda s: score_source(s, project_name), reverse=True)
    return ranked[:limit]
