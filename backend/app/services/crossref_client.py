import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from lxml import etree

from app.core.config import CrossrefConfig
from app.core.errors import ExternalServiceError
from app.models.manuscript import Manuscript

logger = logging.getLogger("journalflow.crossref")

CROSSREF_NS = "http://www.crossref.org/schema/5.4.0"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"


def _q(tag: str) -> str:
    return f"{{{CROSSREF_NS}}}{tag}"


def generate_doi(prefix: str, manuscript_code: str) -> str:
    """
    DOI = <prefix>/<稿件编号小写，'-' 替换为 '.'>，例如 10.12345/jf.2026.00001
    """
    suffix = str(manuscript_code or "").strip().lower().replace("-", ".")
    return f"{prefix.strip().rstrip('/')}/{suffix}"


class CrossrefClient:
    """
    Crossref API Client (DOI Registration, Deposit API)

    中文注释:
    - submit_deposit 是 DOI 注册协作方的唯一入口：成功返回 {"doi", "batch_id", "status_code"}，
      任何注册失败都抛异常，由 DoiService 记为一次失败尝试。
    - 超时由调用方 asyncio.wait_for 统一控制；这里的 httpx timeout 只是兜底。
    """

    def __init__(self, config: Optional[CrossrefConfig] = None, *, timeout: float = 60.0):
        self.deposit_config = config
        self.timeout = timeout

        self.ns = {None: CROSSREF_NS, "xsi": XSI_NS}
        self.schema_location = "http://www.crossref.org/schema/5.4.0 http://www.crossref.org/schemas/crossref5.4.0.xsd"

    @property
    def doi_prefix(self) -> str:
        return self.deposit_config.doi_prefix if self.deposit_config else "10.12345"

    def _create_batch_id(self, manuscript_code: str) -> str:
        ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        short = "".join(ch for ch in manuscript_code if ch.isalnum()).lower() or "article"
        return f"{short}-{ts}"

    def build_article_data(self, manuscript: Manuscript, public_url: Optional[str] = None) -> Dict[str, Any]:
        published = manuscript.published_at or manuscript.created_at
        return {
            "id": manuscript.id,
            "title": manuscript.title,
            "abstract": manuscript.abstract,
            "authors": [
                {"full_name": a.name, "affiliation": a.affiliation, "orcid": a.orcid}
                for a in manuscript.authors
            ],
            "publication_date": published.date().isoformat() if published else "",
            "doi": generate_doi(self.doi_prefix, manuscript.manuscript_code),
            "url": public_url or manuscript.public_url or "",
        }

    def generate_xml(self, article_data: Dict[str, Any], batch_id: str) -> bytes:
        """
        Generate Crossref Deposit XML for an article
        """
        root = etree.Element(_q("doi_batch"), nsmap=self.ns, version="5.4.0")
        root.set(f"{{{XSI_NS}}}schemaLocation", self.schema_location)

        # 1. Head
        head = etree.SubElement(root, _q("head"))
        etree.SubElement(head, _q("doi_batch_id")).text = batch_id
        etree.SubElement(head, _q("timestamp")).text = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")

        depositor = etree.SubElement(head, _q("depositor"))
        etree.SubElement(depositor, _q("depositor_name")).text = "JournalFlow System"
        etree.SubElement(depositor, _q("email_address")).text = (
            self.deposit_config.depositor_email if self.deposit_config else ""
        )
        etree.SubElement(head, _q("registrant")).text = "JournalFlow"

        # 2. Body
        body = etree.SubElement(root, _q("body"))
        journal = etree.SubElement(body, _q("journal"))

        j_meta = etree.SubElement(journal, _q("journal_metadata"))
        etree.SubElement(j_meta, _q("full_title")).text = (
            self.deposit_config.journal_title if self.deposit_config else ""
        )
        if self.deposit_config and self.deposit_config.journal_issn:
            etree.SubElement(j_meta, _q("issn")).text = self.deposit_config.journal_issn

        j_article = etree.SubElement(journal, _q("journal_article"), publication_type="full_text")

        titles = etree.SubElement(j_article, _q("titles"))
        etree.SubElement(titles, _q("title")).text = article_data.get("title", "")

        if article_data.get("authors"):
            contributors = etree.SubElement(j_article, _q("contributors"))
            for idx, author in enumerate(article_data["authors"]):
                sequence = "first" if idx == 0 else "additional"
                person_name = etree.SubElement(
                    contributors,
                    _q("person_name"),
                    contributor_role="author",
                    sequence=sequence,
                )
                parts = str(author.get("full_name") or "").strip().split(" ", 1)
                given_name = parts[0]
                surname = parts[1] if len(parts) > 1 else parts[0]

                etree.SubElement(person_name, _q("given_name")).text = given_name
                etree.SubElement(person_name, _q("surname")).text = surname
                if author.get("affiliation"):
                    affiliations = etree.SubElement(person_name, _q("affiliations"))
                    etree.SubElement(affiliations, _q("institution")).text = author["affiliation"]
                if author.get("orcid"):
                    etree.SubElement(person_name, _q("ORCID")).text = f"https://orcid.org/{author['orcid']}"

        pub_date_str = str(article_data.get("publication_date") or "")
        if pub_date_str:
            # YYYY-MM-DD
            date_parts = pub_date_str.split("-")
            pub_date = etree.SubElement(j_article, _q("publication_date"), media_type="online")
            if len(date_parts) >= 2:
                etree.SubElement(pub_date, _q("month")).text = date_parts[1]
            if len(date_parts) >= 3:
                etree.SubElement(pub_date, _q("day")).text = date_parts[2]
            etree.SubElement(pub_date, _q("year")).text = date_parts[0]

        doi_data = etree.SubElement(j_article, _q("doi_data"))
        etree.SubElement(doi_data, _q("doi")).text = article_data.get("doi", "")
        etree.SubElement(doi_data, _q("resource")).text = article_data.get("url", "")

        return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")

    @staticmethod
    def _looks_like_failure(body: str) -> bool:
        lowered = (body or "").lower()
        return "failure" in lowered or "<h2>error" in lowered or "access denied" in lowered

    async def submit_deposit(self, manuscript: Manuscript) -> Dict[str, Any]:
        """
        Submit the deposit XML to Crossref (doMDUpload)
        """
        if not self.deposit_config:
            raise ExternalServiceError("Crossref deposit configuration missing")

        article_data = self.build_article_data(manuscript)
        batch_id = self._create_batch_id(manuscript.manuscript_code)
        xml_content = self.generate_xml(article_data, batch_id)

        params = {
            "operation": "doMDUpload",
            "login_id": self.deposit_config.depositor_email,
            "login_passwd": self.deposit_config.depositor_password,
        }
        files = {"fname": (f"{batch_id}.xml", xml_content, "application/xml")}

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.deposit_config.api_url, data=params, files=files, timeout=self.timeout
            )
            response.raise_for_status()

        if self._looks_like_failure(response.text):
            raise ExternalServiceError(
                "Crossref rejected the deposit",
                extra={"batch_id": batch_id, "body": response.text[:500]},
            )

        logger.info("[Crossref] deposit accepted: batch_id=%s doi=%s", batch_id, article_data["doi"])
        return {
            "doi": article_data["doi"],
            "batch_id": batch_id,
            "status_code": response.status_code,
        }
