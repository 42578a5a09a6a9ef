"""
Prompt templates for the three extraction phases.
Later phases are conditioned on the known facts of earlier phases so they don't re-derive them.
JSON braces in the templates are doubled for ChatPromptTemplate.
"""
from langchain_core.prompts import ChatPromptTemplate

_SYSTEM = "You are an expert CV analyzer. You return valid JSON only, with no commentary."

_BASIC_INFO_PROMPT = """Extract basic personal information from this CV.

EXTRACT ONLY:
- Full name
- Email address
- Phone number
- Location (city, state/country)
- Current job title
- Professional summary (2-3 sentences)
- About me paragraph (3-4 sentences expanding on the summary)

CV TEXT:
```
{cv_text}
```

IMPORTANT RULES:
- Return valid JSON only
- Use exact values from the CV, don't make up information
- If information is missing, use an empty string
- Keep the summary concise and professional

REQUIRED JSON FORMAT:
{{
  "name": "Full Name",
  "email": "email@domain.com",
  "phone": "phone number",
  "location": "City, State",
  "currentTitle": "Job Title",
  "summary": "Professional summary from CV (2-3 sentences)",
  "aboutMe": "Detailed about me paragraph (3-4 sentences expanding on summary)"
}}"""

_PROFESSIONAL_PROMPT = """You are analyzing a CV for {name}, who works as {current_title} in {profession}.

CONTEXT FROM PREVIOUS ANALYSIS:
- Person: {name}
- Current Title: {current_title}
- Profession: {profession}

EXTRACT FROM THIS CV:
1. Work Experience (jobs, companies, dates, descriptions, achievements)
2. Technical Skills (programming, tools, technologies)
3. Soft Skills (leadership, communication, etc.)
4. Languages spoken
5. Education (degree abbreviations with field like "BA in [Field]", institutions, graduation years)

CV TEXT:
```
{cv_text}
```

IMPORTANT RULES:
- DON'T re-extract name, email, phone - we already have that
- Focus on work history, skills, and education
- Keep degree abbreviations (BA, BS, MA, ...) and add the field of study: "BA in [Field]"
- Use the known context to improve accuracy
- Return valid JSON only

REQUIRED JSON FORMAT:
{{
  "experience": [
    {{
      "title": "Job Title",
      "company": "Company Name",
      "location": "City, State",
      "startDate": "YYYY-MM or YYYY",
      "endDate": "YYYY-MM or Present",
      "description": "Main responsibilities",
      "achievements": ["Achievement 1", "Achievement 2"]
    }}
  ],
  "skills": {{
    "technical": ["Skill1", "Skill2"],
    "soft": ["Skill1", "Skill2"],
    "languages": ["Language1", "Language2"]
  }},
  "education": [
    {{
      "degree": "BA in Computer Science",
      "institution": "Institution Name",
      "location": "City, State",
      "graduationDate": "YYYY",
      "gpa": "3.5 (if mentioned)",
      "achievements": ["Magna Cum Laude (if applicable)"]
    }}
  ]
}}"""

_ADDITIONAL_PROMPT = """You are completing the CV analysis for {name}, a {experience_level} {profession}.

KNOWN INFORMATION:
- Name: {name}
- Profession: {profession}
- Experience Level: {experience_level}
- Key skills: {skills}
- We already extracted: basic info, work experience, skills, education

EXTRACT REMAINING INFORMATION:
1. Projects (personal, professional, academic projects)
2. Certifications (professional certifications, licenses)
3. Awards & Achievements (beyond work achievements)
4. Publications (if any)
5. Volunteer Work (if mentioned)

CV TEXT:
```
{cv_text}
```

IMPORTANT RULES:
- DON'T repeat information we already extracted
- If no relevant information is found, return empty arrays
- Return valid JSON only

REQUIRED JSON FORMAT:
{{
  "projects": [
    {{"name": "Project Name", "description": "Brief description", "technologies": ["Tech1"], "url": "URL (if available)"}}
  ],
  "certifications": [
    {{"name": "Certification Name", "issuer": "Issuing Organization", "date": "YYYY", "url": "Credential URL or ID (if mentioned)"}}
  ],
  "awards": [
    {{"name": "Award Name", "issuer": "Organization", "date": "YYYY", "description": "Brief description"}}
  ],
  "publications": [
    {{"title": "Publication Title", "venue": "Journal/Conference", "date": "YYYY", "authors": ["Author1"]}}
  ],
  "volunteer": [
    {{"organization": "Organization", "role": "Volunteer Role", "duration": "Time period", "description": "What you did"}}
  ]
}}"""

BASIC_INFO_PROMPT = ChatPromptTemplate.from_messages([("system", _SYSTEM), ("human", _BASIC_INFO_PROMPT)])
PROFESSIONAL_PROMPT = ChatPromptTemplate.from_messages([("system", _SYSTEM), ("human", _PROFESSIONAL_PROMPT)])
ADDITIONAL_PROMPT = ChatPromptTemplate.from_messages([("system", _SYSTEM), ("human", _ADDITIONAL_PROMPT)])
