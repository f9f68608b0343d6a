"""Cypher query templates for the graph-backed record store.

All queries use parameterized values and MERGE on natural keys, so
re-running any write with the same parameters leaves the graph unchanged
apart from timestamps.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CypherQueries:
    """Collection of Cypher query templates."""

    # ==========================================================================
    # Projects
    # ==========================================================================

    CREATE_PROJECT = """
        MERGE (p:Project {id: $id})
        ON CREATE SET p.repo_url = $repo_url,
            p.user_id = $user_id,
            p.status = $status,
            p.total_files = $total_files,
            p.processed_files = $processed_files,
            p.created_at = $created_at,
            p.log_seq = 0
        RETURN p.id AS id
    """

    GET_PROJECT = """
        MATCH (p:Project {id: $id})
        OPTIONAL MATCH (p)-[:HAS_LOG]->(l:ProcessingLog)
        WITH p, l
        ORDER BY l.seq
        RETURN p {.*} AS project, collect(l {.*}) AS logs
    """

    SET_PROJECT_STATUS = """
        MATCH (p:Project {id: $id})
        WHERE p.status = $expected
        SET p.status = $status
        RETURN p.id AS id
    """

    RESET_PROGRESS = """
        MATCH (p:Project {id: $id})
        SET p.total_files = $total_files,
            p.processed_files = 0
        RETURN p.id AS id
    """

    # Clamped to total_files and never lowered, in a single statement.
    RECORD_PROGRESS = """
        MATCH (p:Project {id: $id})
        SET p.processed_files = CASE
            WHEN $processed_files > p.total_files THEN p.total_files
            WHEN $processed_files > p.processed_files THEN $processed_files
            ELSE p.processed_files
        END
        RETURN p.id AS id
    """

    APPEND_PROCESSING_LOG = """
        MATCH (p:Project {id: $id})
        SET p.log_seq = coalesce(p.log_seq, 0) + 1
        CREATE (p)-[:HAS_LOG]->(:ProcessingLog {
            event_type: $event_type,
            seq: p.log_seq,
            entry: $entry,
            created_at: $created_at
        })
        RETURN p.id AS id
    """

    ARCHIVE_PROJECT = """
        MATCH (p:Project {id: $id})
        SET p.archived_at = coalesce(p.archived_at, $archived_at)
        RETURN p.id AS id
    """

    FIND_PROJECTS_BY_REPO = """
        MATCH (p:Project {repo_url: $repo_url})
        WHERE p.archived_at IS NULL
        RETURN p.id AS id
        ORDER BY p.created_at
    """

    # ==========================================================================
    # Commits
    # ==========================================================================

    UPSERT_COMMIT = """
        MERGE (c:Commit {project_id: $project_id, commit_hash: $commit_hash})
        SET c.message = CASE WHEN coalesce(c.message, '') = '' THEN $message ELSE c.message END,
            c.author_name = CASE
                WHEN coalesce(c.author_name, '') = '' THEN $author_name ELSE c.author_name END,
            c.author_avatar = CASE
                WHEN coalesce(c.author_avatar, '') = '' THEN $author_avatar
                ELSE c.author_avatar END,
            c.date = coalesce(c.date, $date),
            c.summary = $summary,
            c.processing_status = $processing_status,
            c.updated_at = $updated_at
        WITH c
        OPTIONAL MATCH (p:Project {id: $project_id})
        FOREACH (_ IN CASE WHEN p IS NULL THEN [] ELSE [1] END |
            MERGE (p)-[:HAS_COMMIT]->(c))
        RETURN c {.*} AS commit
    """

    GET_COMMIT = """
        MATCH (c:Commit {project_id: $project_id, commit_hash: $commit_hash})
        RETURN c {.*} AS commit
    """

    LIST_COMMITS = """
        MATCH (c:Commit {project_id: $project_id})
        RETURN c {.*} AS commit
        ORDER BY c.date DESC
    """

    LIST_COMMIT_HASHES = """
        MATCH (c:Commit {project_id: $project_id})
        RETURN c.commit_hash AS commit_hash
    """

    # ==========================================================================
    # Credits
    # ==========================================================================

    GET_CREDITS = """
        MATCH (u:User {id: $user_id})
        RETURN coalesce(u.credits, 0) AS credits
    """

    # Returns no row when the reference was already charged.
    DEDUCT_CREDITS = """
        MERGE (u:User {id: $user_id})
        ON CREATE SET u.credits = 0
        WITH u
        OPTIONAL MATCH (d:CreditDeduction {reference: $reference})
        WITH u, d
        WHERE d IS NULL
        CREATE (u)-[:DEDUCTED]->(:CreditDeduction {
            reference: $reference,
            amount: $amount,
            created_at: $created_at
        })
        SET u.credits = coalesce(u.credits, 0) - $amount
        RETURN u.credits AS credits
    """


QUERIES = CypherQueries()
