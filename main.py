#!/usr/bin/env python3
"""LedgerDesk - Document intake, approval and reconciliation assistant."""

import argparse
import asyncio
import os
from typing import List

from accounting import AccountingError
from ledgerdesk import LedgerDesk, __version__
from storage import parse_storage_uri, StorageError
from workflows import (
    ApprovalPipeline,
    IntakeFile,
    IntakePipeline,
    LedgerDeskError,
    ReconciliationEngine,
    SourceContext,
)


def describe_repository(uri: str) -> str:
    """Get a human-readable name for a file repository URI."""
    try:
        storage_type, value = parse_storage_uri(uri)
    except ValueError:
        return uri
    if storage_type == "local":
        return f"{value} (local)"
    if LedgerDesk.repository is not None:
        return LedgerDesk.repository.display_name
    return uri


def inbox_files(inbox_dir: str) -> List[IntakeFile]:
    """Regular files in an inbox directory, skipping hidden files, sorted by name."""
    names = sorted(
        name for name in os.listdir(inbox_dir)
        if not name.startswith('.') and os.path.isfile(os.path.join(inbox_dir, name))
    )
    return [IntakeFile.from_path(os.path.join(inbox_dir, name)) for name in names]


def require_intake() -> IntakePipeline:
    if LedgerDesk.classifier is None:
        raise SystemExit("Error: no classifier available (check LLM_PROVIDER and API keys)")
    if LedgerDesk.repository is None:
        raise SystemExit("Error: FILE_REPOSITORY not set\n"
                         "Example: FILE_REPOSITORY=local:files or FILE_REPOSITORY=gdrive:folder_id")
    return IntakePipeline(LedgerDesk.classifier, LedgerDesk.store, LedgerDesk.repository)


def print_document(doc) -> None:
    fields = doc.extracted
    line = f"{doc.id}  {doc.status.value:<20} {doc.filename or doc.file_ref}"
    if fields.needs_deep_analysis:
        line += f"  {fields.vendor_name} ${fields.amount}"
        if fields.date:
            line += f" ({fields.date.isoformat()})"
    if doc.is_duplicate:
        line += f"  [duplicate of {doc.duplicate_of_id}]"
    print(line)


async def run_file(path: str) -> None:
    intake = require_intake()
    intake_file = IntakeFile.from_path(path)
    doc = await intake.stage_and_ingest(
        await intake_file.read(), intake_file.filename, intake_file.mime_type, SourceContext.WEB)
    print_document(doc)


async def run_inbox(inbox_dir: str) -> None:
    if not os.path.isdir(inbox_dir):
        raise SystemExit(f"Error: inbox directory not found: {inbox_dir}")
    intake = require_intake()
    result = await intake.ingest_batch(inbox_files(inbox_dir), SourceContext.REPOSITORY_SCAN)
    for doc in result.documents:
        print_document(doc)
    for filename, error in result.failures:
        print(f"FAILED  {filename}: {error}")


def run_pending() -> None:
    docs = ApprovalPipeline(LedgerDesk.store).list_pending()
    if not docs:
        print("No documents waiting for review")
    for doc in docs:
        print_document(doc)


async def run_approve(document_id: str, destination: str, target_path: str) -> None:
    approval = ApprovalPipeline(LedgerDesk.store, LedgerDesk.repository, LedgerDesk.accounting)
    result = await approval.approve(document_id, destination=destination, target_path=target_path)
    print(f"Approved {document_id} -> {result.final_path}")
    if result.bill:
        print(f"Bill {result.bill.id}: {result.bill.vendor_name} ${result.bill.total}")
    if not result.file_moved:
        print("Warning: file was not moved")


async def run_reject(document_id: str) -> None:
    approval = ApprovalPipeline(LedgerDesk.store, LedgerDesk.repository, LedgerDesk.accounting)
    doc = await approval.reject(document_id)
    print(f"Document {doc.id} is {doc.status.value}")


async def run_sync(realm_id: str) -> None:
    engine = ReconciliationEngine(LedgerDesk.store, LedgerDesk.accounting)
    count = await engine.sync_book_transactions(realm_id)
    print(f"Synced {count} book transaction(s)")


def run_ghosts(realm_id: str) -> None:
    ghosts = ReconciliationEngine(LedgerDesk.store).detect_ghosts(realm_id)
    print(f"{len(ghosts)} ghost transaction(s) in realm {realm_id}")
    for txn in ghosts:
        print(f"  {txn.date.isoformat()}  ${txn.amount:>10}  {txn.counterparty}  ({txn.external_id})")


def serve(port: int) -> None:
    import uvicorn
    from api import create_app

    uvicorn.run(create_app(), host="0.0.0.0", port=port)


def main(args: argparse.Namespace) -> None:
    LedgerDesk.configure(args)

    if args.serve:
        serve(args.port)
        return

    LedgerDesk.init_services()
    print(f"Database: {LedgerDesk.db_path}")
    if LedgerDesk.file_repository_uri:
        print(f"File repository: {describe_repository(LedgerDesk.file_repository_uri)}")

    try:
        if args.file:
            print(f"Using LLM provider: {LedgerDesk.llm_provider_name}")
            asyncio.run(run_file(args.file))
        elif args.inbox:
            print(f"Using LLM provider: {LedgerDesk.llm_provider_name}")
            asyncio.run(run_inbox(args.inbox))
        elif args.approve:
            asyncio.run(run_approve(args.approve, args.destination, args.target_path))
        elif args.reject:
            asyncio.run(run_reject(args.reject))
        elif args.sync:
            asyncio.run(run_sync(args.sync))
        elif args.ghosts:
            run_ghosts(args.ghosts)
        else:
            run_pending()
    except (LedgerDeskError, AccountingError, StorageError, ValueError) as e:
        print(f"Error: {e}")
        raise SystemExit(1)
    finally:
        LedgerDesk.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Document intake and bookkeeping assistant")
    parser.add_argument("--version", action="version", version=f"ledgerdesk {__version__}")
    parser.add_argument("--file", type=str,
                       help="Stage and classify a single file")
    parser.add_argument("--inbox", type=str,
                       help="Classify every file in a local directory (repository scan)")
    parser.add_argument("--pending", action="store_true",
                       help="List documents waiting for review (default)")
    parser.add_argument("--approve", type=str, metavar="ID",
                       help="Approve a document in review")
    parser.add_argument("--destination", type=str,
                       help="AccountingSystem or ArchiveOnly (use with --approve)")
    parser.add_argument("--target-path", type=str, default="",
                       help="Folder below 'All Files' (use with --approve)")
    parser.add_argument("--reject", type=str, metavar="ID",
                       help="Reject a document")
    parser.add_argument("--sync", type=str, metavar="REALM",
                       help="Copy the realm's bills into the transaction store")
    parser.add_argument("--ghosts", type=str, metavar="REALM",
                       help="List bank transactions with no matching book entry")
    parser.add_argument("--serve", action="store_true",
                       help="Run the HTTP API")
    parser.add_argument("--port", type=int, default=8000,
                       help="Port for --serve")
    parser.add_argument("--db", type=str,
                       help="SQLite database path (overrides DOCSTORE_DB)")
    parser.add_argument("--repository", type=str,
                       help="File repository URI, e.g. local:files or gdrive:folder_id "
                            "(overrides FILE_REPOSITORY)")
    parser.add_argument("--llm", type=str, choices=["openai", "mistral"],
                       help="LLM provider (overrides LLM_PROVIDER)")
    main(parser.parse_args())
