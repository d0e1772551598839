from fastapi import APIRouter, Depends, Request, status
from psycopg import AsyncConnection

from db import getDB
from models.bid import BidCreate, BidUpdate
from models.common import parse_payload
from routes.auth import get_current_owner_user, get_current_provider_user
from services import bids
from utils import check_uploads, split_form, stored_uploads

router = APIRouter(prefix="/api/bids", tags=["bids"])

BID_FILE_FIELDS = ("bid_documents",)


# =========================================================
# 承包商：投標 / 修改 / 撤回 / 我的投標
# =========================================================
@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_bid(
    request: Request,
    user: dict = Depends(get_current_provider_user),
    conn: AsyncConnection = Depends(getDB),
):
    fields, uploads = split_form(await request.form())
    data = parse_payload(BidCreate, fields)
    check_uploads(uploads, BID_FILE_FIELDS)

    async with stored_uploads(uploads, BID_FILE_FIELDS) as stored:
        bid = await bids.submit_bid(conn, user, data, stored.get("bid_documents", []))
    return {"message": "Bid submitted successfully", "bid": bid}


@router.get("/my-bids")
async def my_bids(
    user: dict = Depends(get_current_provider_user),
    conn: AsyncConnection = Depends(getDB),
):
    return await bids.list_my_bids(conn, user)


@router.put("/{project_id}/{bid_id}")
async def update_bid(
    project_id: int,
    bid_id: int,
    request: Request,
    user: dict = Depends(get_current_provider_user),
    conn: AsyncConnection = Depends(getDB),
):
    fields, uploads = split_form(await request.form())
    patch = parse_payload(BidUpdate, fields)
    check_uploads(uploads, BID_FILE_FIELDS)

    async with stored_uploads(uploads, BID_FILE_FIELDS) as stored:
        bid = await bids.update_bid(conn, project_id, bid_id, user, patch, stored.get("bid_documents", []))
    return {"message": "Bid updated successfully", "bid": bid}


@router.delete("/{project_id}/{bid_id}")
async def withdraw_bid(
    project_id: int,
    bid_id: int,
    user: dict = Depends(get_current_provider_user),
    conn: AsyncConnection = Depends(getDB),
):
    await bids.withdraw_bid(conn, project_id, bid_id, user)
    return {"message": "Bid deleted successfully"}


# =========================================================
# 業主：查看投標 / 選標 / 拒絕
# =========================================================
@router.get("/project/{project_id}")
async def project_bids(
    project_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    return await bids.list_project_bids(conn, project_id, user)


@router.put("/{project_id}/{bid_id}/accept")
async def accept_bid(
    project_id: int,
    bid_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    bid = await bids.accept_bid(conn, project_id, bid_id, user)
    return {"message": "Bid accepted successfully", "bid": bid}


@router.put("/{project_id}/{bid_id}/reject")
async def reject_bid(
    project_id: int,
    bid_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    bid = await bids.reject_bid(conn, project_id, bid_id, user)
    return {"message": "Bid rejected", "bid": bid}
