"""Prompts sent to the inference broker."""

CLAIM_EXTRACTION_PROMPT = """You are given the following article.
Remove all the irrelevant informations and only keep subject related informations.
Extract each factual assertion made in it as a separate claim.
Return at MOST top {max_claims} claim made by the journalist.
Respond ONLY with valid JSON in the format:
{{"claims": ["<claim1>", "<claim2>", ...]}}

Article:
\"\"\"{article}\"\"\""""

CLAIM_SCORING_PROMPT = """Context:
Google search for "{claim}" returned approximately {total_results} results.

Claim:
{claim}

Respond ONLY with a valid JSON with this format:
{{'Fact_score': <number%>}}"""

BIAS_SCORING_PROMPT = """You are given the following article. Assess the journalist's bias on a scale of 0% (completely objective) to 100% (highly biased).
Respond ONLY with valid JSON in this format:
{{'bias_score': <number%>}}

Article:
\"\"\"{article}\"\"\""""


def build_claim_extraction_prompt(article: str, max_claims: int = 1) -> str:
    return CLAIM_EXTRACTION_PROMPT.format(article=article, max_claims=max_claims)


def build_claim_scoring_prompt(claim: str, total_results: int) -> str:
    return CLAIM_SCORING_PROMPT.format(claim=claim, total_results=f"{total_results:,}")


def build_bias_scoring_prompt(article: str) -> str:
    return BIAS_SCORING_PROMPT.format(article=article)
