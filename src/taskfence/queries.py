"""GraphQL documents sent to ``POST /graphql``.

One query per entity kind fetches everything the prompt needs in a single
round trip; nested collections are capped at 100 items.
"""

from __future__ import annotations

_AUTHOR = "author { login }"

_TIMELINE = f"""
      timelineItems(first: 100, itemTypes: [ISSUE_COMMENT, CROSS_REFERENCED_EVENT, REFERENCED_EVENT]) {{
        nodes {{
          __typename
          ... on IssueComment {{
            id
            databaseId
            body
            bodyHTML
            {_AUTHOR}
            createdAt
            lastEditedAt
            url
          }}
          ... on CrossReferencedEvent {{
            source {{
              __typename
              ... on Issue {{ number title url }}
              ... on PullRequest {{ number title url }}
            }}
            createdAt
          }}
          ... on ReferencedEvent {{
            commit {{ oid message }}
            createdAt
          }}
        }}
      }}"""

PULL_REQUEST_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      number
      title
      body
      bodyHTML
      state
      url
      {_AUTHOR}
      baseRefName
      headRefName
      headRefOid
      baseRefOid
      additions
      deletions
      changedFiles
      createdAt
      updatedAt
      lastEditedAt
      commits(first: 100) {{
        totalCount
        nodes {{
          commit {{ oid messageHeadline message committedDate }}
        }}
      }}
      files(first: 100) {{
        nodes {{ path additions deletions changeType }}
      }}{_TIMELINE}
      reviews(first: 100) {{
        nodes {{
          id
          databaseId
          {_AUTHOR}
          body
          bodyHTML
          state
          submittedAt
          lastEditedAt
          url
          comments(first: 100) {{
            nodes {{
              id
              databaseId
              body
              bodyHTML
              path
              position
              diffHunk
              {_AUTHOR}
              createdAt
              lastEditedAt
              url
              replyTo {{ id }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""

ISSUE_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{
      number
      title
      body
      bodyHTML
      state
      url
      {_AUTHOR}
      createdAt
      updatedAt
      lastEditedAt{_TIMELINE}
    }}
  }}
}}
"""

VIEWER_QUERY = "query { viewer { login databaseId } }"
