import json
import os
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from requests import exceptions as requests_exceptions


HOST_BASE_ENV = "MARGINALIA_SITE_URL"
DEFAULT_SITE_URL = "http://localhost:8080"
CREDENTIALS_PATH = Path.home() / ".config" / "marginalia" / "credentials.json"
API_PREFIX = "wp-json/wp/v2"


class HostAuthError(Exception):
    pass


@dataclass
class HostCredentials:
    user: str
    app_password: str
    source: str = "unknown"

    @classmethod
    def load(cls) -> "HostCredentials":
        """Load credentials from env or ~/.config/marginalia/credentials.json.

        Priority:
        1. MARGINALIA_WP_USER / MARGINALIA_WP_APP_PASSWORD env vars
        2. credentials.json file
        """
        user = os.getenv("MARGINALIA_WP_USER")
        app_password = os.getenv("MARGINALIA_WP_APP_PASSWORD")
        source = "env:MARGINALIA_WP_USER"

        if not (user and app_password) and CREDENTIALS_PATH.exists():
            with CREDENTIALS_PATH.open("r", encoding="utf-8") as f:
                data = json.load(f)
            user = data.get("user")
            app_password = data.get("app_password")
            source = f"file:{CREDENTIALS_PATH}"

        user = str(user or "").strip()
        app_password = str(app_password or "").strip()
        if not user or not app_password:
            raise HostAuthError(
                "Missing site credentials. Set MARGINALIA_WP_USER and MARGINALIA_WP_APP_PASSWORD or create "
                f"{CREDENTIALS_PATH} with 'user' and 'app_password' fields."
            )
        return cls(user=user, app_password=app_password, source=source)


def _rendered(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("rendered") or value.get("raw") or "")
    if value is None:
        return ""
    return str(value)


def _gmt_iso(value: Any) -> str:
    text = str(value or "").strip()
    if text and not text.endswith("Z") and "+" not in text[10:]:
        text += "Z"
    return text


def _int_header(headers: Any, name: str, default: int) -> int:
    try:
        return int(headers.get(name))
    except (TypeError, ValueError):
        return default


def normalize_post(item: Dict[str, Any]) -> Dict[str, Any]:
    categories: List[str] = []
    embedded = item.get("_embedded") or {}
    for group in embedded.get("wp:term") or []:
        if not isinstance(group, list):
            continue
        for term in group:
            if isinstance(term, dict) and term.get("taxonomy") == "category" and term.get("name"):
                categories.append(str(term["name"]))
    return {
        "id": int(item.get("id") or 0),
        "title": _rendered(item.get("title")),
        "content": _rendered(item.get("content")),
        "status": str(item.get("status") or ""),
        "date": _gmt_iso(item.get("date_gmt") or item.get("date")),
        "link": str(item.get("link") or ""),
        "categories": categories,
    }


def normalize_comment(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": int(item.get("id") or 0),
        "post_id": int(item.get("post") or 0),
        "parent_id": int(item.get("parent") or 0),
        "author_id": int(item.get("author") or 0),
        "author_name": str(item.get("author_name") or ""),
        "date": str(item.get("date") or ""),
        "content": _rendered(item.get("content")),
        "status": str(item.get("status") or ""),
    }


def normalize_user(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": int(item.get("id") or 0),
        "name": str(item.get("name") or item.get("slug") or ""),
        "url": str(item.get("url") or ""),
    }


class HostClient:
    """WordPress REST client for the posts, comments and users the commenter needs.

    Authenticates with an application password over HTTP basic auth.
    """

    def __init__(self, credentials: Optional[HostCredentials] = None, site_url: Optional[str] = None):
        self.credentials = credentials or HostCredentials.load()
        base = site_url or os.getenv(HOST_BASE_ENV) or DEFAULT_SITE_URL
        self.site_url = str(base).strip().rstrip("/")

    @property
    def _auth(self):
        return (self.credentials.user, self.credentials.app_password)

    def _url(self, path: str) -> str:
        return f"{self.site_url}/{API_PREFIX}/{path.lstrip('/')}"

    def _raise_for_error(self, resp, action: str) -> None:
        if resp.status_code in {401, 403}:
            try:
                data = resp.json()
            except Exception:
                data = {}
            message = data.get("message") or data.get("code") or "Authentication required"
            raise HostAuthError(f"Site auth error {resp.status_code} while {action}: {message}")
        if resp.status_code >= 400:
            try:
                data = resp.json()
            except Exception:
                resp.raise_for_status()
            message = data.get("message") or data.get("code") or resp.text
            raise RuntimeError(f"Site error {resp.status_code} while {action}: {message}")

    def _request(self, path: str, params: Optional[Dict[str, Any]], action: str):
        try:
            return requests.get(self._url(path), auth=self._auth, params=params, timeout=30)
        except requests_exceptions.Timeout as e:
            raise RuntimeError(f"Timed out while {action}. Check {self.site_url} is reachable.") from e

    def _get(self, path: str, params: Optional[Dict[str, Any]], action: str, allow_missing: bool = False):
        resp = self._request(path, params, action)
        if allow_missing and resp.status_code == 404:
            return None
        self._raise_for_error(resp, action)
        return resp.json()

    def _get_page(self, path: str, params: Dict[str, Any], action: str):
        """Fetch one collection page. Returns (items, total, total_pages).

        A page past the last one comes back as an empty list instead of an error.
        """
        resp = self._request(path, params, action)
        if resp.status_code in {400, 404}:
            try:
                code = str(resp.json().get("code") or "")
            except Exception:
                code = ""
            if resp.status_code == 404 or code.endswith("_invalid_page_number"):
                return [], 0, 0
        self._raise_for_error(resp, action)
        headers = getattr(resp, "headers", None) or {}
        data = resp.json()
        items = data if isinstance(data, list) else []
        total = _int_header(headers, "X-WP-Total", len(items))
        total_pages = _int_header(headers, "X-WP-TotalPages", 0)
        return items, total, total_pages

    def get_site_info(self) -> Dict[str, str]:
        try:
            resp = requests.get(f"{self.site_url}/wp-json/", timeout=30)
        except requests_exceptions.Timeout as e:
            raise RuntimeError("Timed out while loading site info.") from e
        self._raise_for_error(resp, "loading site info")
        data = resp.json()
        return {
            "name": str(data.get("name") or ""),
            "url": str(data.get("home") or data.get("url") or self.site_url),
        }

    def get_post(self, post_id: int, status: str = "publish") -> Optional[Dict[str, Any]]:
        if int(post_id) <= 0:
            return None
        data = self._get(f"posts/{int(post_id)}", {"_embed": "wp:term", "context": "edit"}, "loading a post", True)
        if not isinstance(data, dict):
            return None
        post = normalize_post(data)
        if status and post["status"] != status:
            return None
        return post

    def query_posts(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        limit = max(1, int(query.get("limit") or 1))
        random_order = str(query.get("orderby") or "").lower() == "rand"
        params: Dict[str, Any] = {
            "status": query.get("status") or "publish",
            "per_page": min(100, limit),
            "orderby": "date" if random_order else (query.get("orderby") or "date"),
            "order": "desc" if random_order else (query.get("order") or "desc"),
            "_embed": "wp:term",
        }
        after_days = query.get("after_days")
        if after_days:
            after = datetime.now(timezone.utc) - timedelta(days=int(after_days))
            params["after"] = after.replace(microsecond=0).isoformat()
        exclude = [int(x) for x in query.get("exclude") or [] if int(x) > 0]
        if exclude:
            params["exclude"] = ",".join(str(x) for x in sorted(set(exclude)))
        for key, param in (("categories", "categories"), ("categories_exclude", "categories_exclude")):
            values = query.get(key)
            if values:
                params[param] = ",".join(str(int(v)) for v in values)
        if query.get("search"):
            params["search"] = str(query["search"])

        post_type = str(query.get("post_type") or "post")
        path = "posts" if post_type == "post" else post_type
        if random_order:
            return self._random_posts(path, params, limit)
        data = self._get(path, params, "querying posts") or []
        posts = [normalize_post(item) for item in data if isinstance(item, dict)]
        return posts[:limit]

    def _random_posts(self, path: str, params: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
        # The REST API has no random order: count the matches, then read single posts at random offsets.
        _, total, _ = self._get_page(path, dict(params, per_page=1, _fields="id"), "counting posts")
        if total <= 0:
            return []
        posts: List[Dict[str, Any]] = []
        for offset in sorted(random.sample(range(total), min(limit, total))):
            items, _, _ = self._get_page(path, dict(params, per_page=1, offset=offset), "querying posts")
            posts.extend(normalize_post(item) for item in items if isinstance(item, dict))
        random.shuffle(posts)
        return posts

    def commented_post_ids(self, user_id: int) -> List[int]:
        ids: List[int] = []
        page = 1
        while True:
            data, _, total_pages = self._get_page(
                "comments",
                {"author": int(user_id), "per_page": 100, "page": page, "status": "all", "_fields": "id,post"},
                "loading comment history",
            )
            if not data:
                break
            for item in data:
                post_id = int(item.get("post") or 0)
                if post_id and post_id not in ids:
                    ids.append(post_id)
            if len(data) < 100 or (total_pages and page >= total_pages):
                break
            page += 1
        return ids

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        if int(user_id) <= 0:
            return None
        data = self._get(f"users/{int(user_id)}", {"context": "edit"}, "loading a user", allow_missing=True)
        return normalize_user(data) if isinstance(data, dict) else None

    def first_admin_id(self) -> Optional[int]:
        data = self._get("users", {"roles": "administrator", "per_page": 1, "orderby": "id"}, "listing administrators")
        if isinstance(data, list) and data:
            return int(data[0].get("id") or 0) or None
        return None

    def get_comment(self, comment_id: int) -> Optional[Dict[str, Any]]:
        if int(comment_id) <= 0:
            return None
        data = self._get(f"comments/{int(comment_id)}", None, "loading a comment", allow_missing=True)
        return normalize_comment(data) if isinstance(data, dict) else None

    def list_comments(self, post_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        data = self._get(
            "comments",
            {"post": int(post_id), "status": "approve", "per_page": limit, "orderby": "date", "order": "desc"},
            "listing comments",
        ) or []
        comments = [normalize_comment(item) for item in data if isinstance(item, dict)]
        comments.reverse()
        return comments

    def create_comment(self, post_id: int, content: str, author_id: int, parent_id: int = 0) -> Dict[str, Any]:
        if not content:
            raise ValueError("Comment content must be provided.")

        payload: Dict[str, Any] = {
            "post": int(post_id),
            "content": content,
            "author": int(author_id),
            "status": "approved",
        }
        if parent_id:
            payload["parent"] = int(parent_id)

        try:
            resp = requests.post(
                self._url("comments"),
                auth=self._auth,
                headers={"Content-Type": "application/json"},
                data=json.dumps(payload),
                timeout=60,
            )
        except requests_exceptions.Timeout as e:
            raise RuntimeError(
                "Timed out while creating a comment. The site may be slow or temporarily unavailable."
            ) from e

        self._raise_for_error(resp, "creating a comment")
        return normalize_comment(resp.json())

    def trash_post(self, post_id: int) -> Dict[str, Any]:
        try:
            resp = requests.delete(self._url(f"posts/{int(post_id)}"), auth=self._auth, timeout=30)
        except requests_exceptions.Timeout as e:
            raise RuntimeError("Timed out while trashing a post.") from e
        self._raise_for_error(resp, "trashing a post")
        return normalize_post(resp.json())
