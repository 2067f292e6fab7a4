"""NSW Public Sector Capability Framework reference data.

Capabilities are grouped; each is assessed at one of five levels. The
``cues`` are phrases the offline analyzer looks for in job documents.
"""

FRAMEWORK_NAME = "NSW Public Sector Capability Framework"

LEVELS = ["Foundational", "Intermediate", "Adept", "Advanced", "Highly Advanced"]

CAPABILITY_FRAMEWORK = [
    # Personal Attributes
    {
        "name": "Display Resilience and Courage",
        "group": "Personal Attributes",
        "description": "Be open and honest, prepared to express your views, and willing to accept and commit to change",
        "cues": ["resilience", "composure under pressure", "challenging situations", "courage"],
    },
    {
        "name": "Act with Integrity",
        "group": "Personal Attributes",
        "description": "Be ethical and professional, and uphold and promote the public sector values",
        "cues": ["integrity", "ethical", "code of conduct", "public sector values"],
    },
    {
        "name": "Manage Self",
        "group": "Personal Attributes",
        "description": "Show drive and motivation, an ability to self-reflect and a commitment to learning",
        "cues": ["self-motivated", "manage own workload", "commitment to learning", "work independently"],
    },
    {
        "name": "Value Diversity and Inclusion",
        "group": "Personal Attributes",
        "description": "Demonstrate inclusive behaviour and show respect for diverse backgrounds, experiences and perspectives",
        "cues": ["diversity", "inclusion", "inclusive", "cultural awareness"],
    },
    # Relationships
    {
        "name": "Communicate Effectively",
        "group": "Relationships",
        "description": "Communicate clearly, actively listen to others, and respond with understanding and respect",
        "cues": ["communication skills", "communicate clearly", "written and verbal", "active listening"],
    },
    {
        "name": "Commit to Customer Service",
        "group": "Relationships",
        "description": "Provide customer-focused services in line with public sector and organisational objectives",
        "cues": ["customer service", "customer focus", "client needs", "service delivery"],
    },
    {
        "name": "Work Collaboratively",
        "group": "Relationships",
        "description": "Collaborate with others and value their contribution",
        "cues": ["collaborate", "collaboration", "teamwork", "work with others"],
    },
    {
        "name": "Influence and Negotiate",
        "group": "Relationships",
        "description": "Gain consensus and commitment from others, and resolve issues and conflicts",
        "cues": ["negotiate", "negotiation", "influence", "resolve conflicts"],
    },
    # Results
    {
        "name": "Deliver Results",
        "group": "Results",
        "description": "Achieve results through the efficient use of resources and a commitment to quality outcomes",
        "cues": ["deliver results", "quality outcomes", "meet deadlines", "achieve outcomes"],
    },
    {
        "name": "Plan and Prioritise",
        "group": "Results",
        "description": "Plan to achieve priority outcomes and respond flexibly to changing circumstances",
        "cues": ["prioritise", "prioritize", "planning", "competing priorities"],
    },
    {
        "name": "Think and Solve Problems",
        "group": "Results",
        "description": "Think, analyse and consider the broader context to develop practical solutions",
        "cues": ["problem solving", "solve problems", "analytical", "critical thinking"],
    },
    {
        "name": "Demonstrate Accountability",
        "group": "Results",
        "description": "Be proactive and responsible for own actions, and adhere to legislation, policy and guidelines",
        "cues": ["accountability", "accountable", "compliance", "adhere to policy"],
    },
    # Business Enablers
    {
        "name": "Finance",
        "group": "Business Enablers",
        "description": "Understand and apply financial processes to achieve value for money and minimise financial risk",
        "cues": ["financial", "budget", "value for money"],
    },
    {
        "name": "Technology",
        "group": "Business Enablers",
        "description": "Understand and use available technologies to maximise efficiencies and effectiveness",
        "cues": ["technology", "digital tools", "information systems"],
    },
    {
        "name": "Procurement and Contract Management",
        "group": "Business Enablers",
        "description": "Understand and apply procurement processes to ensure effective purchasing and contract performance",
        "cues": ["procurement", "contract management", "tender"],
    },
    {
        "name": "Project Management",
        "group": "Business Enablers",
        "description": "Understand and apply effective planning, coordination and control methods",
        "cues": ["project management", "project planning", "manage projects"],
    },
    # People Management
    {
        "name": "Manage and Develop People",
        "group": "People Management",
        "description": "Engage and motivate staff, and develop capability and potential in others",
        "cues": ["manage staff", "develop people", "coaching", "supervise"],
    },
    {
        "name": "Inspire Direction and Purpose",
        "group": "People Management",
        "description": "Communicate goals, priorities and vision, and recognise achievements",
        "cues": ["vision", "strategic direction", "inspire"],
    },
    {
        "name": "Optimise Business Outcomes",
        "group": "People Management",
        "description": "Manage people and resources effectively to achieve public value",
        "cues": ["workforce planning", "business outcomes", "resource allocation"],
    },
    {
        "name": "Manage Reform and Change",
        "group": "People Management",
        "description": "Support, promote and champion change, and assist others to engage with change",
        "cues": ["change management", "reform", "lead change"],
    },
]
