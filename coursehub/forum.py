from sqlalchemy.orm import aliased

from coursehub import db
from coursehub.errors import ValidationError, NotFound
from coursehub.models import ForumPost, User
from coursehub.notifications import notify_course


def build_thread(posts):
    """Nest posts (dicts with id/parent_id, oldest first) under their parents.

    Posts whose parent is not in `posts` stay at the top level. Each post gets
    a `replies` list; sibling order follows the input order.
    """
    by_id = {}
    for post in posts:
        post["replies"] = []
        by_id[post["id"]] = post

    tree = []
    for post in posts:
        parent = by_id.get(post.get("parent_id")) if post.get("parent_id") is not None else None
        if parent is not None:
            parent["replies"].append(post)
        else:
            tree.append(post)
    return tree


def list_thread(course_id):
    parent = aliased(ForumPost)
    rows = (db.session.query(ForumPost, User.full_name, parent.content)
            .join(User, User.id == ForumPost.user_id)
            .outerjoin(parent, parent.id == ForumPost.parent_id)
            .filter(ForumPost.course_id == course_id)
            .order_by(ForumPost.created_at.asc(), ForumPost.id.asc())
            .all())
    posts = [{
        "id": post.id,
        "user_id": post.user_id,
        "full_name": full_name,
        "content": post.content,
        "parent_id": post.parent_id,
        "reply_to_content": reply_to,
        "created_at": post.created_at,
    } for post, full_name, reply_to in rows]
    return build_thread(posts)


def post_or_reply(course, author, content, parent_id=None):
    if not content or not content.strip():
        raise ValidationError("Cannot post empty content")

    if parent_id in ("", None):
        parent_id = None
    else:
        try:
            parent_id = int(parent_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid parent post")
        parent = db.session.get(ForumPost, parent_id)
        if parent is None or parent.course_id != course.id:
            raise NotFound("Parent post not found")

    post = ForumPost(course_id=course.id, user_id=author['id'], content=content, parent_id=parent_id)
    db.session.add(post)
    db.session.commit()

    kind = "reply" if parent_id else "post"
    notify_course(course.id, f"New forum {kind} in {course.title}",
                  f"{author['full_name']} wrote:\n\n{content}", exclude_user_id=author['id'])
    return post
