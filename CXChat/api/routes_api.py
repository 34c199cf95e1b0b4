# Third-party imports
from fastapi import APIRouter, Depends, FastAPI, Response

# Local imports
from CXChat import __version__ as __main_version__
from .routes_base import *


router = APIRouter(prefix=API_PREFIX)


# ----------------------------- chat -----------------------------
@router.post("/chat", status_code=201)
async def send_message(payload: SendMessageRequest, ctx: AppContext = Depends(get_context)):
    """Send a message with an explicit sender (echoed to the sender's room)."""
    message = await ctx.pipeline.send_message(
        payload.sender,
        payload.receiver,
        payload.content,
        type=payload.type,
        post_id=payload.postId,
        echo_to_sender=config.ECHO_TO_SENDER,
    )
    return message.to_dict()


@router.post("/chat/send", status_code=201)
async def send_message_authenticated(
    payload: AuthSendMessageRequest,
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    """Send a message as the token's owner; the caller already has the result."""
    message = await ctx.pipeline.send_message(
        user_id,
        payload.receiverId,
        payload.message,
        type=payload.type,
        post_id=payload.postId,
        echo_to_sender=False,
    )
    return message.to_dict()


# The static /chat/* routes must stay ahead of /chat/{sender_id}/{receiver_id}.
@router.get("/chat/history")
async def my_chat_history(
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    return ctx.aggregator.chat_history(user_id)


@router.get("/chat/history/{user_id}")
async def chat_history(user_id: str, ctx: AppContext = Depends(get_context)):
    return ctx.aggregator.chat_history(user_id)


@router.get("/chat/unread-count")
async def unread_message_count(
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    by_sender = ctx.aggregator.unread_message_counts_by_sender(user_id)
    return {"unreadCount": sum(by_sender.values()), "bySender": by_sender}


@router.get("/chat/{sender_id}/{receiver_id}")
async def conversation(sender_id: str, receiver_id: str, ctx: AppContext = Depends(get_context)):
    return [m.to_dict() for m in ctx.aggregator.conversation(sender_id, receiver_id)]


@router.put("/chat/mark-read/{sender_id}/{receiver_id}")
async def mark_messages_read(sender_id: str, receiver_id: str, ctx: AppContext = Depends(get_context)):
    updated = ctx.read_state.mark_read(sender_id, receiver_id)
    return {"message": "Messages marked as read", "updated": updated}


# ------------------------- notifications -------------------------
@router.get("/notifications")
async def list_notifications(
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    return ctx.aggregator.list_notifications(user_id)


@router.post("/notifications", status_code=201)
async def create_notification(
    payload: NotifyRequest,
    response: Response,
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    """Record an action (like, comment, follow, reminder) by the caller and push it."""
    notification = await ctx.pipeline.notify(
        user_id,
        payload.receiverId,
        payload.type,
        content=payload.content,
        post_id=payload.postId,
    )
    if notification is None:
        response.status_code = 200
        return {"message": "Own action, nobody notified", "notification": None}
    return {"message": "Notification created", "notification": notification.to_dict()}


@router.get("/notifications/unread-count")
async def unread_notification_count(
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    return {"unreadCount": ctx.aggregator.unread_notification_count(user_id)}


@router.put("/notifications/mark-read")
async def mark_notifications_read(
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    updated = ctx.aggregator.mark_all_read(user_id)
    return {"message": "Notifications marked as read", "updated": updated}


# ----------------------------- posts -----------------------------
@router.post("/post/{post_id}/liked")
async def post_liked(
    post_id: str,
    payload: PostLikedRequest,
    user_id: str = Depends(get_current_user),
    ctx: AppContext = Depends(get_context)
):
    """
    Push a post's updated like list to its owner. When the caller is in the
    list the like is new and the owner also gets a ``like`` notification.
    """
    notification = None
    if user_id in payload.likes:
        notification = await ctx.pipeline.notify(user_id, payload.ownerId, "like", post_id=post_id)
    result = await ctx.signals.post_liked(payload.ownerId, post_id, payload.likes)
    return {
        "delivered": result.delivered,
        "notification": notification.to_dict() if notification else None,
    }


# ----------------------------- users -----------------------------
@router.get("/user/search")
async def search_users(q: str = "", username: str = "", limit: int = 20,
                       ctx: AppContext = Depends(get_context)):
    """Case-insensitive partial match on usernames (``?q=`` or ``?username=``)."""
    pattern = (q or username).strip()
    if not pattern:
        return []
    profiles = (ctx.store.public_profile(uid)
                for uid in ctx.store.find_by_username_pattern(pattern, limit=limit))
    return [p.to_dict() for p in profiles if p is not None]


# ----------------------------- misc ------------------------------
@router.get("/health")
async def health(ctx: AppContext = Depends(get_context)):
    return {
        "status": "ok",
        "version": __main_version__,
        "connections": len(ctx.registry),
        "onlineUsers": len(ctx.registry.online_users()),
    }


def create_app(context: AppContext) -> FastAPI:
    """
    Build the HTTP api bound to ``context``.

    Args:
        context: Application context shared with the websocket server

    Returns:
        FastAPI application
    """
    app = create_base_app(context)
    app.include_router(router)
    return app
