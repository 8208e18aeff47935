from typing import Any, Dict, List, Optional


def make_post(post_id: int, title: str = "", content: str = "", status: str = "publish", **extra) -> Dict[str, Any]:
    post = {
        "id": post_id,
        "title": title or f"Post {post_id}",
        "content": content or f"<p>Body of post {post_id}.</p>",
        "status": status,
        "date": "2026-10-01T09:00:00Z",
        "link": f"https://example.test/?p={post_id}",
        "categories": [],
    }
    post.update(extra)
    return post


class FakeHost:
    """In-memory stand-in for HostClient."""

    def __init__(self) -> None:
        self.posts: Dict[int, Dict[str, Any]] = {}
        self.users: Dict[int, Dict[str, Any]] = {}
        self.comments: List[Dict[str, Any]] = []
        self.queries: List[Dict[str, Any]] = []
        self.admin_id: Optional[int] = 1
        self.fail_create: Optional[Exception] = None
        self.site = {"name": "Test Blog", "url": "https://example.test"}

    def add_user(self, user_id: int, name: str) -> None:
        self.users[user_id] = {"id": user_id, "name": name, "url": ""}

    def add_post(self, post_id: int, **kwargs) -> Dict[str, Any]:
        post = make_post(post_id, **kwargs)
        self.posts[post_id] = post
        return post

    def add_comment(self, post_id: int, author_id: int, content: str, author_name: str = "", parent_id: int = 0):
        comment = {
            "id": 100 + len(self.comments),
            "post_id": post_id,
            "parent_id": parent_id,
            "author_id": author_id,
            "author_name": author_name or self.users.get(author_id, {}).get("name", ""),
            "date": "2026-10-02T10:00:00",
            "content": content,
            "status": "approved",
        }
        self.comments.append(comment)
        return comment

    def get_site_info(self) -> Dict[str, str]:
        return dict(self.site)

    def get_post(self, post_id: int, status: str = "publish"):
        post = self.posts.get(int(post_id))
        if post is None or (status and post["status"] != status):
            return None
        return dict(post)

    def query_posts(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.queries.append(dict(query))
        exclude = {int(x) for x in query.get("exclude") or []}
        status = query.get("status") or "publish"
        found = [
            dict(p)
            for pid, p in sorted(self.posts.items())
            if p["status"] == status and pid not in exclude
        ]
        return found[: max(1, int(query.get("limit") or 1))]

    def commented_post_ids(self, user_id: int) -> List[int]:
        ids: List[int] = []
        for c in self.comments:
            if c["author_id"] == int(user_id) and c["post_id"] not in ids:
                ids.append(c["post_id"])
        return ids

    def get_user(self, user_id: int):
        user = self.users.get(int(user_id))
        return dict(user) if user else None

    def first_admin_id(self):
        return self.admin_id

    def get_comment(self, comment_id: int):
        for c in self.comments:
            if c["id"] == int(comment_id):
                return dict(c)
        return None

    def list_comments(self, post_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        found = [dict(c) for c in self.comments if c["post_id"] == int(post_id) and c["status"] == "approved"]
        return found[-limit:]

    def create_comment(self, post_id: int, content: str, author_id: int, parent_id: int = 0) -> Dict[str, Any]:
        if self.fail_create is not None:
            raise self.fail_create
        return self.add_comment(post_id, author_id, content, parent_id=parent_id)

    def trash_post(self, post_id: int) -> Dict[str, Any]:
        post = self.posts[int(post_id)]
        post["status"] = "trash"
        return dict(post)
