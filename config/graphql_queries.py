"""GraphQL documents used to read the GitHub repository.

Every repository query takes ``$owner`` and ``$name``; paginated queries also
take ``$after`` (managed by the client) and ``$first``.
"""
from __future__ import annotations

from clients.graphql import GraphQLQuery

REPOSITORY_STATISTICS = GraphQLQuery(
    document_name="repositoryStatistics",
    retrieve_path="repository",
    document="""
query repositoryStatistics($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    labels { totalCount }
    issueTypes { totalCount }
    refs(refPrefix: "refs/heads/", first: 100) {
      nodes { name }
    }
  }
}
""",
)

LABELS = GraphQLQuery(
    document_name="labels",
    retrieve_path="repository.labels",
    document="""
query labels($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    labels(first: $first, after: $after) {
      edges { node { id name description color } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

MILESTONES = GraphQLQuery(
    document_name="milestones",
    retrieve_path="repository.milestones",
    document="""
query milestones($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    milestones(first: $first, after: $after) {
      edges {
        node {
          id
          number
          title
          url
          state
          dueOn
          openIssueCount: issues(states: OPEN) { totalCount }
          closedIssueCount: issues(states: CLOSED) { totalCount }
        }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

ISSUE_TYPES = GraphQLQuery(
    document_name="issueTypes",
    retrieve_path="repository.issueTypes",
    document="""
query issueTypes($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    issueTypes(first: $first, after: $after) {
      edges { node { id name description color } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

ISSUE_PROJECT_ITEMS = GraphQLQuery(
    document_name="issueProjects",
    retrieve_path="node.fields",
    document="""
query issueProjects($projectId: ID!, $first: Int!, $after: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      fields(first: $first, after: $after) {
        nodes {
          ... on ProjectV2SingleSelectField {
            id
            name
            options { id name color description }
          }
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
""",
)

BRANCHES = GraphQLQuery(
    document_name="branches",
    retrieve_path="repository.refs",
    document="""
query branches($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    refs(refPrefix: "refs/heads/", first: $first, after: $after) {
      edges { node { id name } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

ISSUES = GraphQLQuery(
    document_name="issues",
    retrieve_path="repository.issues",
    document="""
query issues($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    issues(first: $first, after: $after) {
      edges {
        node {
          id
          number
          title
          state
          closedAt
          url
          labels(first: 20) { edges { node { id } } }
          milestone { id }
          issueType { id }
          subIssues(first: 50) { edges { node { id } } }
          projectItems(first: 10) {
            edges {
              node {
                fieldValues(first: 20) {
                  edges {
                    node {
                      ... on ProjectV2ItemFieldSingleSelectValue {
                        optionId
                        field { ... on ProjectV2FieldCommon { name } }
                      }
                      ... on ProjectV2ItemFieldNumberValue {
                        number
                        field { ... on ProjectV2FieldCommon { name } }
                      }
                    }
                  }
                }
              }
            }
          }
        }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

BRANCH_PULL_REQUESTS = GraphQLQuery(
    document_name="branchPullRequests",
    retrieve_path="repository.pullRequests",
    document="""
query branchPullRequests($owner: String!, $name: String!, $branchName: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: $first, after: $after, baseRefName: $branchName, states: MERGED) {
      edges {
        node {
          id
          number
          title
          url
          mergedAt
          labels(first: 20) { edges { node { id } } }
          milestone { id }
          closingIssuesReferences(first: 20) { edges { node { id } } }
        }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)

RELEASES = GraphQLQuery(
    document_name="releases",
    retrieve_path="repository.releases",
    document="""
query releases($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    releases(first: $first, after: $after) {
      edges { node { id tagName name publishedAt } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""",
)
